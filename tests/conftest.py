import pytest

from directorcore.config import Config


class FakeProvider:
    """Scripted provider: returns queued replies in order, repeating the last."""

    def __init__(self, *replies, name="gemini", error=None):
        self.name = name
        self.replies = list(replies)
        self.error = error
        self.calls = []

    def _reply(self):
        if self.error is not None:
            raise self.error
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, dict):
            return reply
        return {"provider": self.name, "text": reply}

    async def generate(self, system_instruction, prompt, api_key, images=None, response_schema=None):
        self.calls.append({
            "system_instruction": system_instruction,
            "prompt": prompt,
            "api_key": api_key,
            "images": list(images or []),
            "response_schema": response_schema,
        })
        return self._reply()

    async def chat(self, system_instruction, messages, api_key):
        self.calls.append({
            "system_instruction": system_instruction,
            "messages": list(messages),
            "api_key": api_key,
        })
        return self._reply()


@pytest.fixture
def config():
    return Config(gemini_api_key="server-gemini-key", context_secret="test-secret")


SEED_REPLY = """Summary: A lone lighthouse keeper watches a storm roll in at dusk.
Mood Memory: salt-bleached solitude"""

CONFIRM_REPLY = """Summary: A lighthouse keeper and her dog brace for a violet storm.
Mood Memory: stubborn warmth against the gale"""

GENERATE_REPLY = """Positive Prompt:
cinematic wide shot of a lighthouse keeper on a cliff, violet storm clouds, rim light
Negative Prompt: lowres, watermark, extra limbs
Settings:
Model: SDXL
Steps: 40
CFG: 7
Summary: A keeper stands firm as the storm breaks.
Mood Memory: defiant calm"""
