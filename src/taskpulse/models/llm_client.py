"""Prompt-in, text-out client base shared by all language-model integrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

__all__ = [
    "GenerationRequest",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
    "TextGenerationClient",
]


class LLMClientError(RuntimeError):
    """Base error raised for language-model client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the backend envelope carries no usable text."""


@dataclass(slots=True)
class GenerationRequest:
    """One system/user prompt pair addressed to a model."""

    model: str
    system_prompt: str
    user_prompt: str
    temperature: float = 0.1
    metadata: Dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Render the request as a Responses-style ``input`` payload."""
        messages: List[Dict[str, Any]] = []
        for role, text in (("system", self.system_prompt), ("user", self.user_prompt)):
            if text:
                messages.append({"role": role, "content": [{"type": "input_text", "text": text}]})
        payload: Dict[str, Any] = {
            "model": self.model,
            "input": messages,
            "temperature": self.temperature,
        }
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


class TextGenerationClient:
    """Returns raw reply text or raises :class:`LLMClientError`.

    The client makes no promise about the shape of the reply; parsing and
    repair happen downstream.
    """

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Send one prompt pair and return the reply text."""
        request = GenerationRequest(
            model=self._model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            metadata={key: str(value) for key, value in (metadata or {}).items()},
        )
        try:
            raw = self._raw_invoke(request.to_payload())
        except LLMClientError:
            raise
        except Exception as error:  # noqa: BLE001 - normalise backend failures
            raise LLMTransportError(f"Transport rejected the request: {error}") from error
        if not isinstance(raw, str):
            raise LLMResponseFormatError("Model returned a non-text reply.")
        return raw

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
