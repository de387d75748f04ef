import asyncio
import json

import pytest

from directorcore.director import DirectorService
from directorcore.errors import ProviderError
from directorcore.prompts import LOOP_ASSISTANT_OPENING, LOOP_ASSISTANT_SYSTEM_PROMPT, LOOP_CYCLE_SYSTEM_PROMPT
from schemas import NextLoopCycle

from conftest import FakeProvider

LOCK = {
    "subject_identity": "Paper crane with a red stripe",
    "lighting_and_palette": "Warm tungsten, soft falloff",
    "camera_grammar": "Locked-off macro",
    "environment_motif": "Drifting dust motes",
}

CYCLE = {
    "cycle": 3,
    "storyBeat": {
        "title": "Unfold",
        "summary": "The crane opens one wing.",
        "continuity_lock": LOCK,
        "acceptance_check": ["Red stripe visible"],
    },
    "endFrame": {
        "frame_prompt": "Crane mid-unfold, wing at 45 degrees",
        "motion_guidance": "Slow ease-out",
        "transition_signal": "Dust settles",
    },
    "autopilot_directive": "Next cycle folds the wing back.",
}

PREVIOUS = [{"cycle": 1, "title": "Rest"}, {"cycle": 2, "title": "Stir"}]


def assistant(service, body, headers=None):
    return asyncio.run(service.handle_loop_assistant(headers or {}, json.dumps(body)))


def cycle(service, body, headers=None):
    raw = body if isinstance(body, (str, bytes)) else json.dumps(body)
    return asyncio.run(service.handle_loop_cycle(headers or {}, raw))


# ---------------------------------------------------------------------------
# Loop assistant
# ---------------------------------------------------------------------------

def test_assistant_opens_empty_conversation(config):
    gemini = FakeProvider("  What should the loop feel like?  ")
    status, body = assistant(DirectorService(config, providers={"gemini": gemini}), {})
    assert status == 200
    assert body == {"reply": "What should the loop feel like?"}
    call = gemini.calls[0]
    assert call["system_instruction"] == LOOP_ASSISTANT_SYSTEM_PROMPT
    assert call["messages"] == [{"role": "user", "content": LOOP_ASSISTANT_OPENING}]
    assert call["api_key"] == "server-gemini-key"


def test_assistant_forwards_history(config):
    gemini = FakeProvider("Keep the stripe on the left wing.")
    history = [
        {"role": "assistant", "content": "Hi"},
        {"role": "user", "content": "The crane keeps changing colour", "extra": 1},
    ]
    status, body = assistant(
        DirectorService(config, providers={"gemini": gemini}),
        {"history": history},
        headers={"X-Gemini-Api-Key": "client-key"},
    )
    assert status == 200
    assert gemini.calls[0]["messages"] == [
        {"role": "assistant", "content": "Hi"},
        {"role": "user", "content": "The crane keeps changing colour"},
    ]
    assert gemini.calls[0]["api_key"] == "client-key"


def test_assistant_prompt_override(config):
    config.loop_assistant_prompt = "Be terse."
    gemini = FakeProvider("ok")
    assistant(DirectorService(config, providers={"gemini": gemini}), {"messages": []})
    assert gemini.calls[0]["system_instruction"] == "Be terse."


@pytest.mark.parametrize("messages, field", [
    ([{"role": "system", "content": "x"}], "messages.0.role"),
    ([{"role": "user"}], "messages.0.content"),
    ([{"role": "user", "content": 5}], "messages.0.content"),
    ("hello", "messages"),
])
def test_assistant_rejects_bad_history(config, messages, field):
    gemini = FakeProvider("unused")
    status, body = assistant(DirectorService(config, providers={"gemini": gemini}), {"messages": messages})
    assert status == 400
    assert body["kind"] == "validation_error"
    assert body["retryable"] is False
    assert any(e.startswith(field) for e in body["details"]["errors"])
    assert not gemini.calls


def test_assistant_empty_reply_is_a_provider_error(config):
    service = DirectorService(config, providers={"gemini": FakeProvider("   ")})
    status, body = assistant(service, {})
    assert status == 502
    assert body["kind"] == "provider_error"
    assert body["retryable"] is True
    assert "did not return any text" in body["error"]


def test_assistant_surfaces_upstream_status(config):
    error = ProviderError("rate limited", status=429, provider="gemini")
    status, body = assistant(DirectorService(config, providers={"gemini": FakeProvider(error=error)}), {})
    assert status == 429
    assert body["provider"] == "gemini"


def test_assistant_missing_credential(config):
    config.gemini_api_key = ""
    gemini = FakeProvider("unused")
    status, body = assistant(DirectorService(config, providers={"gemini": gemini}), {})
    assert status == 401
    assert body["kind"] == "missing_credential"
    assert not gemini.calls


# ---------------------------------------------------------------------------
# Incremental loop cycles
# ---------------------------------------------------------------------------

def test_next_cycle(config):
    veo = FakeProvider("```json\n" + json.dumps(CYCLE) + "\n```", name="veo")
    status, body = cycle(DirectorService(config, providers={"veo": veo}), {
        "visionSeed": "A paper crane that never finishes unfolding",
        "startFrames": ["crane folded on a desk"],
        "previousCycles": PREVIOUS,
        "predictiveMode": True,
    })
    assert status == 200
    assert body == CYCLE
    call = veo.calls[0]
    assert call["system_instruction"] == LOOP_CYCLE_SYSTEM_PROMPT
    assert call["response_schema"] is NextLoopCycle
    assert "NEXT CYCLE INDEX: 3" in call["prompt"]
    assert "ACTIVE" in call["prompt"]
    assert "crane folded on a desk" in call["prompt"]


def test_missing_cycle_number_is_filled_in(config):
    reply = {k: v for k, v in CYCLE.items() if k != "cycle"}
    veo = FakeProvider(json.dumps(reply), name="veo")
    status, body = cycle(DirectorService(config, providers={"veo": veo}), {
        "visionSeed": "crane", "previousCycles": PREVIOUS,
    })
    assert status == 200
    assert body["cycle"] == 3


def test_first_cycle_defaults(config):
    veo = FakeProvider(json.dumps({k: v for k, v in CYCLE.items() if k != "cycle"}), name="veo")
    status, body = cycle(DirectorService(config, providers={"veo": veo}), {"visionSeed": "crane"})
    assert status == 200
    assert body["cycle"] == 1
    assert "None provided" in veo.calls[0]["prompt"]
    assert "OFF" in veo.calls[0]["prompt"]


@pytest.mark.parametrize("reply", [
    "I could not think of a cycle.",
    json.dumps([CYCLE]),
    json.dumps({**CYCLE, "endFrame": {"frame_prompt": "only this"}}),
])
def test_malformed_cycle_reply(config, reply):
    service = DirectorService(config, providers={"veo": FakeProvider(reply, name="veo")})
    status, body = cycle(service, {"visionSeed": "crane"})
    assert status == 502
    assert body["kind"] == "malformed_provider_response"
    assert body["mode"] == "loop_sequence"
    assert body["details"]["rawText"] == reply


@pytest.mark.parametrize("body", [{}, {"visionSeed": "   "}, {"visionSeed": "x", "predictiveMode": "yes"}])
def test_cycle_request_validation(config, body):
    veo = FakeProvider("unused", name="veo")
    status, out = cycle(DirectorService(config, providers={"veo": veo}), body)
    assert status == 400
    assert out["kind"] == "validation_error"
    assert not veo.calls


def test_cycle_invalid_json(config):
    status, out = cycle(DirectorService(config, providers={}), "{")
    assert status == 400
    assert out["kind"] == "invalid_body"
