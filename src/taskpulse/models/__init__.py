"""Text-generation clients consumed by the analysis orchestrator."""

from .llm_client import (
    GenerationRequest,
    LLMClientError,
    LLMResponseFormatError,
    LLMTransportError,
    TextGenerationClient,
)
from .responses import ResponsesClient

__all__ = [
    "GenerationRequest",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
    "ResponsesClient",
    "TextGenerationClient",
]
