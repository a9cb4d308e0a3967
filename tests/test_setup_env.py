"""
Tests for setup_env - .env template writer
"""

from __future__ import annotations

from setup_env import ENV_TEMPLATE, setup_env


class TestSetupEnv:
    """Tests for setup_env"""

    def test_writes_template(self, tmp_path, capsys):
        """Test that a missing .env is created from the template"""
        env_file = tmp_path / ".env"
        assert setup_env(env_file) is True
        assert env_file.read_text(encoding="utf-8") == ENV_TEMPLATE
        assert "PERSISTWATCH_API_KEY=" in ENV_TEMPLATE
        assert "Created .env file" in capsys.readouterr().out

    def test_keeps_existing_file(self, tmp_path, capsys):
        """Test that an existing .env is never overwritten"""
        env_file = tmp_path / ".env"
        env_file.write_text("PERSISTWATCH_API_KEY=mine\n", encoding="utf-8")
        assert setup_env(env_file) is False
        assert env_file.read_text(encoding="utf-8") == "PERSISTWATCH_API_KEY=mine\n"
        assert "already exists" in capsys.readouterr().out
