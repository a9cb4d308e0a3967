# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: talk to the Anthropic messages API on behalf of the monitor.
two calls: analyze_diff (whole change set, larger token budget) and analyze_item (one changed item,
answer decides whether the user gets an alert). the model is asked for JSON; we parse the first text
block directly and, failing that, pull the JSON out of a fenced code block.
every failure surfaces as an AnalystAPIError subclass so callers only need one except clause.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import json  # request body and response parsing
import logging  # request diagnostics
import re  # fenced code block extraction
from typing import Any  # raw JSON values

import requests  # HTTP transport

from escalation.payloads import (
    AnalysisRequest,
    DetailedItemAnalysis,
    DiffAnalysisResponse,
    SingleItemAnalysisResponse,
)
from escalation.prompts import DIFF_SYSTEM_PROMPT, ITEM_SYSTEM_PROMPT, AIPromptOptions

log = logging.getLogger("persistwatch.escalation")

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DIFF_MAX_TOKENS = 4096
ITEM_MAX_TOKENS = 1024

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")


class AnalystAPIError(Exception):
    """Base for everything the remote analyst call can fail with."""


class InvalidResponseError(AnalystAPIError):
    def __init__(self, reason: str = "") -> None:
        super().__init__("Invalid response from Claude API")
        self.reason = reason  # transport-level detail, if any


class APIStatusError(AnalystAPIError):
    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        if status_code == 401:
            msg = "Invalid API key. Please check your Claude API key."
        elif status_code == 429:
            msg = "Rate limit exceeded. Please try again later."
        else:
            msg = f"API error ({status_code}): {body}"
        super().__init__(msg)


class NoTextContentError(AnalystAPIError):
    def __init__(self) -> None:
        super().__init__("No text content in Claude response")


class InvalidJSONError(AnalystAPIError):
    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(f"Failed to parse Claude response as JSON: {text[:200]}...")


def extract_json(text: str) -> Any:
    """
    Two stages: the whole text as JSON, then the first ``` fenced block.
    raises InvalidJSONError when neither parses.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    m = _FENCED_JSON.search(text)
    if m:
        try:
            return json.loads(m.group(1))
        except json.JSONDecodeError:
            pass
    raise InvalidJSONError(text)


class AnalystClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        prompt_additions: str = "",
        api_url: str = API_URL,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.prompt_additions = prompt_additions  # appended to both system prompts
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: Any, session: requests.Session | None = None) -> AnalystClient:
        return cls(
            api_key=config.api_key,
            model=config.model,
            prompt_additions=AIPromptOptions.from_config(config).full_analysis_prompt(),
            api_url=config.api_url,
            timeout=float(config.api_timeout_sec),
            session=session,
        )

    # transport

    def _post(self, system: str, payload: dict[str, Any], max_tokens: int) -> str:
        body = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system + self.prompt_additions,
            "messages": [{"role": "user", "content": json.dumps(payload)}],
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
        }
        try:
            resp = self.session.post(self.api_url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            log.warning("analyst request failed: %s", exc)
            raise InvalidResponseError(str(exc)) from exc

        if resp.status_code != 200:
            raise APIStatusError(resp.status_code, resp.text or "Unknown error")

        try:
            data = resp.json()
        except ValueError as exc:
            raise InvalidResponseError("response body is not JSON") from exc

        blocks = data.get("content") if isinstance(data, dict) else None
        for block in blocks or []:
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                return block["text"]
        raise NoTextContentError()

    def _decode(self, text: str, model_cls: Any) -> Any:
        data = extract_json(text)
        if not isinstance(data, dict):
            raise InvalidJSONError(text)
        try:
            return model_cls.from_dict(data)
        except (TypeError, ValueError, AttributeError) as exc:  # missing required keys, wrong shapes
            raise InvalidJSONError(text) from exc

    # calls

    def analyze_diff(self, request: AnalysisRequest) -> DiffAnalysisResponse:
        text = self._post(DIFF_SYSTEM_PROMPT, request.to_dict(), DIFF_MAX_TOKENS)
        result: DiffAnalysisResponse = self._decode(text, DiffAnalysisResponse)
        log.info("diff analysis: severity=%s, %d findings", result.severity, len(result.findings))
        return result

    def analyze_item(self, analysis: DetailedItemAnalysis) -> SingleItemAnalysisResponse:
        system = ITEM_SYSTEM_PROMPT.format(change_type=analysis.change_type)
        text = self._post(system, analysis.to_dict(), ITEM_MAX_TOKENS)
        result: SingleItemAnalysisResponse = self._decode(text, SingleItemAnalysisResponse)
        log.info("item analysis for %s: notify=%s severity=%s", analysis.identifier, result.should_notify, result.severity)
        return result
