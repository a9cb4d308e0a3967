# SPDX-License-Identifier: GPL-3.0-or-later
#!/usr/bin/env python3
"""
goal: environment setup script for PersistWatch. writes a .env template if it doesn't exist yet,
      so new devs only have to paste their API key instead of remembering every variable name.
"""

from pathlib import Path

ENV_TEMPLATE = """# =========================================
# PersistWatch Environment Variables
# =========================================
# keep this file private and never commit it!

# optional: Anthropic API key, only needed for AI analysis (starts with sk-ant-)
PERSISTWATCH_API_KEY=

# optional: turn AI analysis on (needs a valid key above)
PERSISTWATCH_USE_AI=false

# optional: minimal | balanced | paranoid
# PERSISTWATCH_PRESET=balanced

# optional: where the discovery tool writes its export (relative to the project root)
# PERSISTWATCH_ITEMS_PATH=data/items.json
"""


def setup_env(env_file: Path | None = None) -> bool:
    """
    main setup function. checks if .env exists, and if not, writes the template.
    returns True when a new file was written.
    """
    env_file = env_file or Path(".env")

    # if .env already exists, don't overwrite it - dev might have custom values
    if env_file.exists():
        print("[OK] .env file already exists")
        print("  Skipping setup. Delete .env if you want to regenerate.")
        return False

    env_file.write_text(ENV_TEMPLATE, encoding="utf-8")

    print("[OK] Created .env file")
    print("  Add your PERSISTWATCH_API_KEY to enable AI analysis.")
    return True


if __name__ == "__main__":
    # run the setup when script is executed directly
    setup_env()
