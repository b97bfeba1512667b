from __future__ import annotations

import json

import pytest

from taskpulse.config import PipelineConfig
from taskpulse.models.llm_client import LLMResponseFormatError, LLMTransportError
from taskpulse.models.responses import ResponsesClient


def _envelope(text: str) -> str:
    response = {
        "id": "resp_mock",
        "object": "response",
        "status": "completed",
        "output": [
            {
                "id": "msg_mock",
                "type": "message",
                "role": "assistant",
                "content": [
                    {
                        "type": "output_text",
                        "text": text,
                    }
                ],
            }
        ],
    }
    return json.dumps(response)


def test_client_returns_first_output_text() -> None:
    sent = []

    def transport(payload: dict) -> str:
        sent.append(payload)
        return _envelope('{"statusSummary": "ok"}')

    client = ResponsesClient(model="gpt-5-mini", transport=transport)
    reply = client.generate("system rules", "user context", metadata={"subject_id": "T1"})

    assert reply == '{"statusSummary": "ok"}'
    payload = sent[0]
    assert payload["model"] == "gpt-5-mini"
    assert [message["role"] for message in payload["input"]] == ["system", "user"]
    assert payload["input"][1]["content"][0]["text"] == "user context"
    assert payload["metadata"] == {"subject_id": "T1"}


def test_client_prefers_output_text_field() -> None:
    client = ResponsesClient(transport=lambda _: json.dumps({"output_text": "plain reply"}))

    assert client.generate("s", "u") == "plain reply"


def test_chat_style_choices_are_supported() -> None:
    body = json.dumps({"choices": [{"message": {"role": "assistant", "content": "from choices"}}]})
    client = ResponsesClient(transport=lambda _: body)

    assert client.generate("s", "u") == "from choices"


def test_non_json_body_is_returned_verbatim() -> None:
    client = ResponsesClient(transport=lambda _: "```json\n{}\n```")

    assert client.generate("s", "u") == "```json\n{}\n```"


def test_transport_errors_are_normalised() -> None:
    def transport(_: dict) -> str:
        raise OSError("connection refused")

    client = ResponsesClient(transport=transport)

    with pytest.raises(LLMTransportError):
        client.generate("s", "u")


def test_empty_body_is_a_format_error() -> None:
    client = ResponsesClient(transport=lambda _: "")

    with pytest.raises(LLMResponseFormatError):
        client.generate("s", "u")


def test_default_transport_requires_api_key(monkeypatch) -> None:
    monkeypatch.delenv("TASKPULSE_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        ResponsesClient()


def test_from_config_uses_model_settings() -> None:
    config = PipelineConfig.from_mapping({"models": {"default": "gpt-5", "timeout": 12}})

    client = ResponsesClient.from_config(config, transport=lambda _: "{}")

    assert client.model == "gpt-5"
    assert client._timeout == 12


def test_payload_metadata_is_stringified() -> None:
    sent = []
    client = ResponsesClient(transport=lambda payload: sent.append(payload) or json.dumps({"output_text": "x"}))

    client.generate("s", "u", metadata={"subject_id": "T1", "generation": 3})

    assert sent[0]["metadata"] == {"subject_id": "T1", "generation": "3"}
    assert sent[0]["temperature"] == 0.1


def test_json_reply_without_envelope_is_the_reply() -> None:
    body = json.dumps({"statusSummary": "ok", "nextSteps": "go"})
    client = ResponsesClient(transport=lambda _: body)

    assert client.generate("s", "u") == body
