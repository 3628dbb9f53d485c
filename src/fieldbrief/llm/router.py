from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any

import jsonschema

from ..config import GeneratorConfig
from ..digest import DIGEST_OUTPUT_SCHEMA, MODE_ASSISTED, DigestGenerationError
from ..utils import log_event

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class ChatCompletionsDigestGenerator:
    """Digest generator backed by an OpenAI-compatible chat completions API."""

    mode = MODE_ASSISTED

    def __init__(
        self,
        config: GeneratorConfig,
        logger: logging.Logger | None = None,
        transport=None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("fieldbrief.llm")
        self._transport = transport or _http_request

    def generate(self, instruction: str, context: dict[str, Any]) -> dict[str, Any]:
        text = json.dumps(context, ensure_ascii=False, sort_keys=True)
        messages = _render_messages(instruction, text)
        parsed = _maybe_parse_json(self._call(messages))
        validation = _validate_json(DIGEST_OUTPUT_SCHEMA, parsed)
        if not validation["ok"]:
            log_event(
                self.logger,
                logging.INFO,
                "digest_output_repair",
                model=self.config.model,
                error=validation["error"],
            )
            repair_messages = _render_messages(
                instruction,
                text + "\n\nReturn valid JSON only. Fix schema violations.",
            )
            parsed = _maybe_parse_json(self._call(repair_messages))
            validation = _validate_json(DIGEST_OUTPUT_SCHEMA, parsed)
        if not validation["ok"]:
            raise DigestGenerationError(f"schema_invalid: {validation['error']}")
        return parsed

    def _call(self, messages: list[dict[str, str]]) -> str:
        url = _join_url(self.config.base_url or DEFAULT_BASE_URL, "/chat/completions")
        payload = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }
        response = self._transport(
            "POST",
            url,
            _auth_headers(self.config.api_key),
            payload,
            self.config.timeout_seconds,
        )
        return _read_openai(response)


def _render_messages(instruction: str, text: str) -> list[dict[str, str]]:
    return [{"role": "system", "content": instruction}, {"role": "user", "content": text}]


def _http_request(
    method: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    timeout_seconds: int,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method=method)
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="ignore")
        raise DigestGenerationError(f"http_error {exc.code}: {raw[:500]}") from exc
    except urllib.error.URLError as exc:
        raise DigestGenerationError(f"network_error: {exc}") from exc
    except TimeoutError as exc:
        raise DigestGenerationError(f"timeout after {timeout_seconds}s") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}


def _read_openai(response: dict[str, Any]) -> str:
    choices = response.get("choices") or []
    if not choices:
        raise DigestGenerationError("openai_missing_choices")
    return choices[0]["message"]["content"] or ""


def _auth_headers(api_key: str | None) -> dict[str, str]:
    if not api_key:
        return {}
    return {"Authorization": f"Bearer {api_key}"}


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _maybe_parse_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _validate_json(schema: dict[str, Any], payload: Any) -> dict[str, Any]:
    try:
        jsonschema.validate(payload, schema)
        return {"ok": True}
    except jsonschema.ValidationError as exc:
        return {"ok": False, "error": exc.message}
