import asyncio
from types import SimpleNamespace

import pytest
from google.genai import errors as genai_errors

from directorcore import providers as providers_module
from directorcore.errors import ProviderError
from directorcore.providers import GeminiProvider, decode_data_uri
from schemas import VideoPlan


def _response(text):
    part = SimpleNamespace(text=text, inline_data=None)
    candidate = SimpleNamespace(finish_reason="STOP", content=SimpleNamespace(parts=[part]))
    return SimpleNamespace(candidates=[candidate])


class FakeModels:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture
def fake_models(monkeypatch):
    """Swap the google-genai client for one whose replies the test controls."""
    models = FakeModels(_response("ok"))

    def client(api_key):
        models.api_key = api_key
        return SimpleNamespace(aio=SimpleNamespace(models=models))

    monkeypatch.setattr(providers_module.genai, "Client", client)
    return models


def run(coro):
    return asyncio.run(coro)


def test_plan_call_requests_structured_json(fake_models):
    provider = GeminiProvider("veo", ["gemini-2.5-pro"])
    payload = run(provider.generate("system", "plan it", "key-1", response_schema=VideoPlan))

    call = fake_models.calls[0]
    assert call["model"] == "gemini-2.5-pro"
    assert call["config"].system_instruction == "system"
    assert call["config"].response_mime_type == "application/json"
    assert call["config"].response_schema is VideoPlan
    assert fake_models.api_key == "key-1"
    assert payload == {
        "provider": "veo",
        "model": "gemini-2.5-pro",
        "text": "ok",
        "metadata": {"finishReason": "STOP"},
    }


def test_prose_call_has_no_schema(fake_models):
    provider = GeminiProvider("gemini", ["gemini-2.5-flash"])
    run(provider.generate("system", "describe", "key", images=["data:image/png;base64,QUJD", "not-a-uri"]))

    call = fake_models.calls[0]
    assert call["config"].response_schema is None
    assert call["config"].response_mime_type is None
    # The unreadable image is skipped, the prompt comes last
    assert len(call["contents"]) == 2
    assert call["contents"][-1] == "describe"


def test_chat_maps_assistant_turns_to_model_role(fake_models):
    provider = GeminiProvider("gemini", ["gemini-2.5-flash"])
    run(provider.chat("coach", [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "next?"},
    ], "key"))

    contents = fake_models.calls[0]["contents"]
    assert [c.role for c in contents] == ["user", "model", "user"]
    assert [c.parts[0].text for c in contents] == ["hi", "hello", "next?"]
    assert fake_models.calls[0]["config"].system_instruction == "coach"


def test_api_error_keeps_upstream_status(fake_models):
    fake_models.outcome = genai_errors.ClientError(
        429, {"error": {"code": 429, "message": "quota exhausted", "status": "RESOURCE_EXHAUSTED"}}
    )
    with pytest.raises(ProviderError) as exc:
        run(GeminiProvider("veo", ["m"]).generate("s", "p", "k"))
    assert exc.value.status_code == 429
    assert exc.value.provider == "veo"
    assert exc.value.retryable


def test_transport_failure_is_a_gateway_error(fake_models):
    fake_models.outcome = ConnectionError("connection reset")
    with pytest.raises(ProviderError) as exc:
        run(GeminiProvider("gemini", ["m"]).chat("s", [{"role": "user", "content": "x"}], "k"))
    assert exc.value.status_code == 502
    assert "connection reset" in exc.value.message


def test_decode_data_uri():
    assert decode_data_uri("data:image/png;base64,QUJD") == ("image/png", b"ABC")
    assert decode_data_uri("data:,hello") == ("application/octet-stream", b"hello")
    with pytest.raises(ValueError):
        decode_data_uri("data:image/png;base64,@@@")
    with pytest.raises(ValueError):
        decode_data_uri("https://example.com/a.png")
