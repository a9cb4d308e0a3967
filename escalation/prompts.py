# SPDX-License-Identifier: GPL-3.0-or-later
"""goal: fixed system prompts for the remote analyst plus the user-tunable preference block appended to them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DIFF_SYSTEM_PROMPT = """You are a macOS security analyst. Analyze the following persistence changes and current state.

Your task:
1. Identify suspicious new persistence items
2. Detect known malware patterns
3. Flag risky configurations
4. Map findings to MITRE ATT&CK techniques where applicable

Respond with JSON matching this exact schema:
{
  "severity": "info|low|medium|high|critical",
  "summary": "Brief 1-2 sentence summary of findings",
  "findings": [
    {
      "severity": "info|low|medium|high|critical",
      "title": "Short finding title",
      "description": "Detailed explanation",
      "affectedItems": ["item identifiers"],
      "mitreTechniques": ["T1543.001", "T1059.004"]
    }
  ],
  "recommendations": ["Action item 1", "Action item 2"]
}

Severity guidelines:
- critical: Active malware indicators, backdoors, known APT techniques
- high: Unsigned items in sensitive locations, suspicious LOLBins usage, risky entitlements
- medium: New third-party persistence, modified configurations, expired certificates
- low: New items from known vendors, minor configuration changes
- info: Expected system changes, Apple updates

Be concise but thorough. Prioritize actionable findings."""

ITEM_SYSTEM_PROMPT = """You are a macOS security analyst. A persistence item has been {change_type} on this system.
Analyze all the provided details and decide if this warrants a security notification.

You have complete information about:
- The persistence mechanism type and configuration
- Code signature status and validity
- Risk scores and specific risk factors
- LOLBins (Living-off-the-Land Binaries) detections
- Behavioral anomalies
- Intent mismatches between plist config and binary behavior
- Age anomalies (suspicious timing patterns)

Respond with JSON matching this exact schema:
{{
  "shouldNotify": true/false,
  "severity": "info|low|medium|high|critical",
  "title": "Short notification title (max 50 chars)",
  "explanation": "Clear explanation of why this is or isn't suspicious (2-3 sentences)",
  "recommendation": "What the user should do (optional, null if not needed)",
  "mitreTechniques": ["T1543.001"] // MITRE ATT&CK techniques if applicable, null otherwise
}}

Decision guidelines:
- shouldNotify: true if the user should be alerted about this change
- critical: Active malware indicators, known APT techniques, backdoor behavior
- high: Unsigned in sensitive locations, LOLBins abuse, suspicious entitlements, multiple red flags
- medium: New third-party persistence, expired certs, single concerning indicator
- low: Known vendor but unusual config, minor anomalies
- info: Expected system behavior, Apple updates, trusted software

Consider the full context: a signed item from a known vendor with no anomalies is likely safe,
while an unsigned item with LOLBins usage and age anomalies deserves attention."""


@dataclass(frozen=True)
class AIPromptOptions:
    ignore_apple_signed: bool = True
    ignore_system_paths: bool = True
    prioritize_unsigned: bool = True
    focus_lolbins: bool = True
    minimum_risk_score: int = 0  # 0 disables the filter line
    ignored_paths: str = ""  # free text, comma separated
    custom_prompt: str = ""

    @classmethod
    def from_config(cls, config: Any) -> AIPromptOptions:
        return cls(
            ignore_apple_signed=bool(config.ai_ignore_apple_signed),
            ignore_system_paths=bool(config.ai_ignore_system_paths),
            prioritize_unsigned=bool(config.ai_prioritize_unsigned),
            focus_lolbins=bool(config.ai_focus_lolbins),
            minimum_risk_score=int(config.ai_minimum_risk_score),
            ignored_paths=str(config.ai_ignored_paths or ""),
            custom_prompt=str(config.ai_custom_prompt or ""),
        )

    @property
    def additions(self) -> str:
        lines: list[str] = []
        if self.ignore_apple_signed:
            lines.append("- Ignore or deprioritize items that are signed by Apple (com.apple.*)")
        if self.ignore_system_paths:
            lines.append("- Deprioritize items in /System and /Library paths as they are typically system components")
        if self.prioritize_unsigned:
            lines.append("- Pay special attention to unsigned executables - these are higher risk")
        if self.focus_lolbins:
            lines.append("- Focus on detecting Living-off-the-Land Binaries (LOLBins) usage patterns")
        if self.minimum_risk_score > 0:
            lines.append(f"- Only analyze items with risk score >= {self.minimum_risk_score}")
        if self.ignored_paths:
            lines.append(f"- Ignore items in these paths: {self.ignored_paths}")
        return "\n\nAnalysis preferences:\n" + "\n".join(lines) if lines else ""

    def full_analysis_prompt(self) -> str:
        """Preference block plus the free-form custom instructions, appended verbatim to either system prompt."""
        prompt = self.additions
        if self.custom_prompt:
            prompt += f"\n\nAdditional instructions:\n{self.custom_prompt}"
        return prompt
