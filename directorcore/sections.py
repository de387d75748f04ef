"""Labeled-section extraction from plain-text model replies.

Models are asked to answer with headings such as::

    Summary: A lone lighthouse keeper ...
    Mood Memory: salt-bleached solitude
    Positive Prompt:
    cinematic wide shot of ...
    Negative Prompt: lowres, watermark
    Settings:
    Model: SDXL
    Steps: 40

Headings are matched case-insensitively and may be wrapped in markdown
bold or list markers. Any line that looks like ``Word: value`` but is not a
known heading is treated as body text, so ``Model: SDXL`` inside a Settings
block stays inside it.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

SUMMARY = "Summary"
MOOD_MEMORY = "Mood Memory"
POSITIVE_PROMPT = "Positive Prompt"
NEGATIVE_PROMPT = "Negative Prompt"
SETTINGS = "Settings"

SECTION_HEADERS = (SUMMARY, MOOD_MEMORY, POSITIVE_PROMPT, NEGATIVE_PROMPT, SETTINGS)

_HEADER_LOOKUP = {h.lower(): h for h in SECTION_HEADERS}
_HEADER_RE = re.compile(r"^[#*\s]*([^:*#]+?)[*\s]*:\s*(.*)$")
_COLON_PAIR_RE = re.compile(r"^(?:[-•*]\s*)?([^:]+):\s*(.*)$")
_EQUALS_PAIR_RE = re.compile(r"^(?:[-•*]\s*)?([^=]+?)\s*=\s*(.+)$")


def _detect_header(line: str) -> tuple[str, str] | None:
    """Return ``(header, inline_content)`` when ``line`` opens a known section."""
    stripped = line.strip()
    if not stripped:
        return None
    match = _HEADER_RE.match(stripped)
    if not match:
        return None
    candidate = re.sub(r"\s+", " ", match.group(1)).strip().lower()
    header = _HEADER_LOOKUP.get(candidate)
    if header is None:
        return None
    inline = match.group(2).lstrip("*").strip()
    return header, inline


def extract_section(text: str, header: str) -> str | None:
    """Return the body of the first ``header`` section in ``text``, or None.

    A section runs until the next known heading. Empty sections count as
    missing.
    """
    collected: list[str] = []
    collecting = False

    for line in text.splitlines():
        detected = _detect_header(line)
        if detected:
            found, inline = detected
            if found == header:
                collecting = True
                collected = [inline] if inline else []
            elif collecting:
                break
            continue
        if collecting:
            collected.append(line.rstrip("\r"))

    result = "\n".join(collected).strip()
    return result or None


def parse_settings(section_text: str | None) -> dict[str, str]:
    """Parse a Settings block into a key/value mapping.

    Accepts ``Key: value`` and ``key = value`` lines, optionally bulleted.
    A line without a separator continues the previous value.
    """
    if not section_text:
        return {}

    settings: dict[str, str] = {}
    pending_key: str | None = None

    for raw in section_text.splitlines():
        line = raw.strip()
        if not line:
            continue
        match = _COLON_PAIR_RE.match(line) or _EQUALS_PAIR_RE.match(line)
        if match:
            key = match.group(1).strip()
            settings[key] = match.group(2).strip()
            pending_key = key
            continue
        if pending_key:
            settings[pending_key] = f"{settings[pending_key]} {line}".strip()

    return settings


def render_settings_block(settings: dict[str, str]) -> str:
    """Inverse of :func:`parse_settings`.

    Keys must be colon-free and both sides single-line; surrounding
    whitespace is not kept since parsing trims it. Every line carries a
    bullet so keys that themselves start with ``-``/``*``/``•`` survive.
    """
    return "\n".join(f"- {key}: {value}" for key, value in settings.items())


@dataclass
class ParsedImagePrompt:
    summary: str = ""
    positive_prompt: str = ""
    negative_prompt: str = ""
    settings: dict[str, str] = field(default_factory=dict)
    mood_memory: str | None = None

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "positivePrompt": self.positive_prompt,
            "negativePrompt": self.negative_prompt,
            "settings": dict(self.settings),
            "moodMemory": self.mood_memory,
        }


def parse_structured_text(content: str) -> ParsedImagePrompt | None:
    """Pull every known section out of ``content``; None when none are present."""
    summary = extract_section(content, SUMMARY)
    mood_memory = extract_section(content, MOOD_MEMORY)
    positive = extract_section(content, POSITIVE_PROMPT)
    negative = extract_section(content, NEGATIVE_PROMPT)
    settings_text = extract_section(content, SETTINGS)

    if not any((summary, mood_memory, positive, negative, settings_text)):
        return None

    return ParsedImagePrompt(
        summary=summary or "",
        positive_prompt=positive or "",
        negative_prompt=negative or "",
        settings=parse_settings(settings_text),
        mood_memory=mood_memory,
    )
