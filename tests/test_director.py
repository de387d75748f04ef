import asyncio
import json

import pytest

from directorcore.director import DirectorService
from directorcore.errors import ProviderError
from directorcore.prompts import DIRECTOR_CORE_SYSTEM_PROMPT
from schemas import LoopSequence, VideoPlan

from conftest import FakeProvider

LOCK = {
    "subject_identity": "Courier in a yellow raincoat",
    "lighting_and_palette": "Magenta neon, wet asphalt reflections",
    "camera_grammar": "35mm handheld drift",
    "environment_motif": "Flickering kanji signs",
}


def loop_reply(count):
    cycles = [{
        "segment_title": f"Part {i + 1}",
        "scene_description": "Steam curls past the signs",
        "continuity_lock": {**LOCK, "emotional_trajectory": "restless"},
        "acceptance_check": ["Raincoat stays yellow"],
    } for i in range(count)]
    return json.dumps({"cycles": cycles})


def handle(service, body, headers=None):
    raw = body if isinstance(body, (str, bytes)) else json.dumps(body)
    return asyncio.run(service.handle(headers or {}, raw))


def test_loop_sequence_end_to_end(config):
    veo = FakeProvider(loop_reply(60), name="veo")
    service = DirectorService(config, providers={"veo": veo})
    status, result = handle(service, {
        "mode": "loop_sequence",
        "payload": {
            "vision_seed_text": "neon alley",
            "start_frame_description": "wide establishing shot",
            "loop_length": 48,
        },
    })
    assert status == 200
    assert result.success
    assert result.provider == "veo"
    cycles = result.result["cycles"]
    assert 1 <= len(cycles) <= 48
    for c in cycles:
        assert all(c["continuity_lock"][k].strip() for k in LOCK)
    assert veo.calls[0]["system_instruction"] == DIRECTOR_CORE_SYSTEM_PROMPT
    assert veo.calls[0]["api_key"] == "server-gemini-key"
    assert veo.calls[0]["response_schema"] is LoopSequence


def test_image_prompt_uses_client_key_and_images(config):
    gemini = FakeProvider({"provider": "gemini", "promptText": "hero shot"})
    service = DirectorService(config, providers={"gemini": gemini})
    status, result = handle(service, {
        "mode": "image_prompt",
        "payload": {
            "vision_seed_text": "hero on a rooftop",
            "model": "flux",
            "selectedOptions": {"lightingStyles": ["rim"]},
            "glossary": {"lightingStyles": [
                {"id": "rim", "label": "Rim", "tooltip": "Edge light", "promptSnippet": "crisp rim light"},
            ]},
        },
        "images": ["data:image/png;base64,AAAA"],
    }, headers={"X-Gemini-Api-Key": "client-key"})

    assert status == 200
    assert result.result == "hero shot"
    call = gemini.calls[0]
    assert call["api_key"] == "client-key"
    assert call["images"] == ["data:image/png;base64,AAAA"]
    assert call["response_schema"] is None
    prompt = json.loads(call["prompt"])
    assert prompt["mode"] == "image_prompt"
    assert prompt["selectedSnippets"] == {"lightingStyles": ["crisp rim light"]}


def test_planner_context_is_forwarded_trimmed(config):
    veo = FakeProvider(json.dumps({"scenes": [], "thumbnailConcept": "x"}), name="veo")
    service = DirectorService(config, providers={"veo": veo})
    status, result = handle(service, {
        "mode": "video_plan",
        "payload": {
            "vision_seed_text": "city",
            "script_text": "Hello.",
            "tone": "calm",
            "visual_style": "realistic",
            "aspect_ratio": "16:9",
            "planner_context": "  Energy curve: 1. Hello. [rising 1.00]  ",
        },
    })
    assert status == 200
    assert result.result == {"scenes": [], "thumbnailConcept": "x"}
    assert json.loads(veo.calls[0]["prompt"])["planner_context"] == "Energy curve: 1. Hello. [rising 1.00]"
    assert veo.calls[0]["response_schema"] is VideoPlan


def test_invalid_json_body(config):
    provider = FakeProvider("unused")
    status, result = handle(DirectorService(config, providers={"gemini": provider}), "{oops")
    assert status == 400
    assert result.kind == "invalid_body"
    assert not provider.calls


def test_validation_errors_stop_before_provider(config):
    provider = FakeProvider("unused", name="veo")
    service = DirectorService(config, providers={"veo": provider})
    status, result = handle(service, {"mode": "loop_sequence", "payload": {"vision_seed_text": "x"}})
    assert status == 400
    assert result.mode == "loop_sequence"
    assert result.kind == "validation_error"
    assert "payload.start_frame_description" in result.error
    assert result.details["errors"]
    assert not provider.calls


def test_missing_credential(config):
    config.gemini_api_key = ""
    provider = FakeProvider("unused")
    service = DirectorService(config, providers={"gemini": provider})
    status, result = handle(service, {"mode": "image_prompt", "payload": {"vision_seed_text": "x", "model": "sdxl"}})
    assert status == 401
    assert result.provider == "gemini"
    assert "GEMINI_API_KEY" in result.error
    assert not provider.calls


@pytest.mark.parametrize("upstream, expected", [(429, 429), (None, 502), (200, 502)])
def test_provider_errors_surface_status(config, upstream, expected):
    error = ProviderError("quota exhausted", status=upstream, provider="veo")
    service = DirectorService(config, providers={"veo": FakeProvider(error=error, name="veo")})
    status, result = handle(service, {
        "mode": "loop_sequence",
        "payload": {"vision_seed_text": "x", "start_frame_description": "y"},
    })
    assert status == expected
    assert result.status == expected
    assert result.success is False
    assert result.mode == "loop_sequence"
    assert result.provider == "veo"
    assert result.kind == "provider_error"
    assert result.retryable is True
    assert result.to_json_dict()["retryable"] is True


def test_unconfigured_provider_is_a_provider_error(config):
    status, result = handle(DirectorService(config, providers={}), {
        "mode": "loop_sequence",
        "payload": {"vision_seed_text": "x", "start_frame_description": "y"},
    })
    assert status == 502
    assert result.kind == "provider_error"
    assert result.retryable is True
    assert result.to_json_dict()["retryable"] is True


def test_only_provider_errors_are_retryable(config):
    service = DirectorService(config, providers={"veo": FakeProvider("unused", name="veo")})
    status, result = handle(service, {"mode": "loop_sequence", "payload": {}})
    assert status == 400
    assert result.to_json_dict()["retryable"] is False

    status, result = handle(service, b"{")
    assert result.retryable is False

    config.gemini_api_key = ""
    status, result = handle(DirectorService(config, providers={}), {
        "mode": "loop_sequence",
        "payload": {"vision_seed_text": "x", "start_frame_description": "y"},
    })
    assert status == 401
    assert result.retryable is False


def test_success_result_omits_retryable(config):
    veo = FakeProvider(json.dumps({"scenes": [], "thumbnailConcept": "x"}), name="veo")
    status, result = handle(DirectorService(config, providers={"veo": veo}), {
        "mode": "video_plan",
        "payload": {
            "vision_seed_text": "city", "script_text": "Hi.", "tone": "calm",
            "visual_style": "anime", "aspect_ratio": "9:16",
        },
    })
    assert status == 200
    assert "retryable" not in result.to_json_dict()
