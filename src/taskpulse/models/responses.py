"""Text-generation client for an OpenAI-style Responses endpoint.

The HTTP call is a swappable ``transport`` callable so tests and offline
runs never touch the network. Envelopes are searched for the first non-blank
text part; a body that is not a JSON envelope is treated as the reply itself.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional

from ..config import PipelineConfig
from .llm_client import LLMResponseFormatError, LLMTransportError, TextGenerationClient

__all__ = ["ResponsesClient"]

Transport = Callable[[Dict[str, Any]], str]
LOGGER = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1/responses"
API_KEY_VARIABLES = ("TASKPULSE_API_KEY", "OPENAI_API_KEY")
_ENVELOPE_KEYS = ("output", "choices", "content")


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _first_text(node: Any) -> Optional[str]:
    """Depth-first search of an output list for its first text part."""
    if isinstance(node, dict):
        node = [node]
    if not isinstance(node, list):
        return None
    for item in node:
        if not isinstance(item, dict):
            continue
        if not _blank(item.get("text")):
            return item["text"]
        message = item.get("message")
        if isinstance(message, dict) and not _blank(message.get("content")):
            return message["content"]
        nested = _first_text(item.get("content"))
        if nested is not None:
            return nested
    return None


class ResponsesClient(TextGenerationClient):
    """Sends analysis prompts to a Responses endpoint and returns the reply text."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = "gpt-5-mini",
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(model=model)
        self._api_key = api_key or next(filter(None, map(os.getenv, API_KEY_VARIABLES)), None)
        if transport is None and not self._api_key:
            raise ValueError(f"Set one of {', '.join(API_KEY_VARIABLES)} to call the model endpoint.")
        self._endpoint = endpoint
        self._timeout = timeout
        self._transport = transport or self._post

    @classmethod
    def from_config(cls, config: PipelineConfig, *, transport: Optional[Transport] = None) -> "ResponsesClient":
        return cls(model=config.models.default, timeout=config.models.timeout, transport=transport)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        try:
            body = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # noqa: BLE001 - transport boundary
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        text = self._extract_text(body)
        if text is None:
            raise LLMResponseFormatError("Response did not contain output text.")
        return text

    def _post(self, payload: Dict[str, Any]) -> str:
        request = urllib.request.Request(
            self._endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"},
            method="POST",
        )
        LOGGER.debug("POST %s (model %s)", self._endpoint, payload.get("model"))
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                return response.read().decode("utf-8")
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {detail}") from error
        except (urllib.error.URLError, TimeoutError) as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Model endpoint unreachable: {error}") from error

    @staticmethod
    def _extract_text(body: str) -> Optional[str]:
        if not body:
            return None
        try:
            envelope = json.loads(body)
        except json.JSONDecodeError:
            return body
        if not isinstance(envelope, dict):
            return body
        if not _blank(envelope.get("output_text")):
            return envelope["output_text"]
        for key in _ENVELOPE_KEYS:
            text = _first_text(envelope.get(key))
            if text is not None:
                return text
        return body
