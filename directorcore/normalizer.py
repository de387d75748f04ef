"""Map raw provider payloads onto :class:`~schemas.DirectorCoreResult`.

Providers answer in many shapes: a plan object, a JSON string (sometimes
fenced in markdown), or a nested ``predictions[].candidates[].content
.parts[].text`` tree. Each mode has an ordered chain of candidate
extractors; every candidate is coerced to JSON and the first one the mode
accepts wins. Nothing here raises: an unparseable plan yields a success
result with ``fallbackText`` set and ``result`` unset.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterable, Iterator

from pydantic import ValidationError

from schemas import DirectorCoreResult, LoopCycle, MediaAsset, MediaFrame, VideoPlan

from .sections import parse_structured_text
from .validation import format_errors

log = logging.getLogger(__name__)

# (candidate, raw text it came from or None)
Candidate = tuple[Any, str | None]
Extractor = Callable[[dict], Iterable[Candidate]]

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.S)


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _num(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value > 0 else None


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def coerce_json(candidate: Any) -> Any:
    """Objects pass through; strings are parsed as JSON, fenced JSON or an embedded object."""
    if isinstance(candidate, (dict, list)):
        return candidate
    text = _str(candidate)
    if text is None:
        return None

    attempts = [text.strip()]
    attempts += [m.strip() for m in _FENCE_RE.findall(text)]
    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start, end = text.find(open_ch), text.rfind(close_ch)
        if 0 <= start < end:
            attempts.append(text[start:end + 1])

    for attempt in attempts:
        try:
            return json.loads(attempt)
        except (json.JSONDecodeError, ValueError):
            continue
    return None


# ---------------------------------------------------------------------------
# Candidate extractors
# ---------------------------------------------------------------------------

def _part_texts(candidates: Any) -> Iterator[str]:
    for candidate in _list(candidates):
        for part in _list(_dict(_dict(candidate).get("content")).get("parts")):
            if text := _str(_dict(part).get("text")):
                yield text


# Keys that describe the provider call rather than the plan
_ENVELOPE_KEYS = frozenset({
    "success", "mode", "provider", "model", "text", "promptText", "metadata",
    "images", "videos", "audio", "media", "candidates", "predictions",
})


def direct_objects(*keys: str) -> Extractor:
    def extract(payload: dict) -> Iterator[Candidate]:
        for key in keys:
            value = payload.get(key)
            if isinstance(value, (dict, list)):
                yield value, None
        yield {k: v for k, v in payload.items() if k not in _ENVELOPE_KEYS}, None
    return extract


def text_fields(payload: dict) -> Iterator[Candidate]:
    metadata = _dict(payload.get("metadata"))
    for value in (payload.get("text"), payload.get("result"), payload.get("promptText"), metadata.get("rawText")):
        if text := _str(value):
            yield text, text


def nested_predictions(payload: dict) -> Iterator[Candidate]:
    for text in _part_texts(payload.get("candidates")):
        yield text, text
    for prediction in _list(payload.get("predictions")):
        prediction = _dict(prediction)
        for text in _part_texts(prediction.get("candidates")):
            yield text, text
        for key in ("content", "text", "output"):
            if text := _str(prediction.get(key)):
                yield text, text


VIDEO_EXTRACTORS: tuple[Extractor, ...] = (
    direct_objects("storyboard", "plan", "result"),
    text_fields,
    nested_predictions,
)

LOOP_EXTRACTORS: tuple[Extractor, ...] = (
    direct_objects("loop", "result"),
    text_fields,
    nested_predictions,
)


def run_chain(
    payload: dict, extractors: Iterable[Extractor], accept: Callable[[Any], Any]
) -> tuple[Any, str | None]:
    """First accepted candidate across ``extractors`` as ``(result, raw_text)``."""
    for extractor in extractors:
        for candidate, raw in extractor(payload):
            value = accept(coerce_json(candidate))
            if value is not None:
                return value, raw
    return None, None


# ---------------------------------------------------------------------------
# Mode acceptance
# ---------------------------------------------------------------------------

def accept_video_plan(value: Any) -> dict | None:
    if isinstance(value, dict) and (isinstance(value.get("scenes"), list) or isinstance(value.get("storyboard"), list)):
        return value
    return None


def video_plan_issues(plan: Any) -> list[str]:
    """Schema problems in an accepted plan; reported, never used to reject it."""
    if not isinstance(plan, dict) or "scenes" not in plan:
        return []
    try:
        VideoPlan.model_validate(plan)
    except ValidationError as e:
        return format_errors(e)
    return []


def valid_cycles(cycles: list) -> list[dict]:
    """Cycles carrying a complete continuity lock and an acceptance-check list."""
    kept = []
    for i, cycle in enumerate(cycles):
        try:
            LoopCycle.model_validate(cycle)
        except ValidationError as e:
            log.warning("Dropping loop cycle %d: %d validation error(s)", i, e.error_count())
            continue
        kept.append(cycle)
    return kept


def loop_acceptor(loop_length: int | None) -> Callable[[Any], dict | None]:
    def accept(value: Any) -> dict | None:
        if isinstance(value, list):
            value = {"cycles": value}
        if not isinstance(value, dict) or not isinstance(value.get("cycles"), list):
            return None
        cycles = valid_cycles(value["cycles"])
        if not cycles:
            return None
        if loop_length and len(cycles) > loop_length:
            cycles = cycles[:loop_length]
        result = dict(value)
        result["cycles"] = cycles
        if result.get("loopLength") is None and loop_length:
            result["loopLength"] = loop_length
        return result
    return accept


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

def _kind_for(raw: dict, default: str) -> str:
    kind = _str(raw.get("kind")) or _str(raw.get("type"))
    if kind in ("image", "video", "audio"):
        return kind
    mime = _str(raw.get("mimeType")) or _str(raw.get("mime_type")) or ""
    for prefix in ("image", "video", "audio"):
        if mime.startswith(prefix + "/"):
            return prefix
    return default


def _frame(raw: Any) -> MediaFrame | None:
    if text := _str(raw):
        if text.startswith("data:") or not text.startswith(("http://", "https://", "gs://", "/")):
            return MediaFrame(base64=text)
        return MediaFrame(url=text)
    raw = _dict(raw)
    url = _str(raw.get("url")) or _str(raw.get("uri"))
    data = _str(raw.get("data")) or _str(raw.get("base64"))
    if not url and not data:
        return None
    return MediaFrame(
        url=url, base64=data,
        mime_type=_str(raw.get("mimeType")) or _str(raw.get("mime_type")),
        caption=_str(raw.get("caption")) or _str(raw.get("altText")),
    )


def normalize_asset(raw: Any, default_kind: str, index: int) -> MediaAsset | None:
    """One provider media entry as a MediaAsset, or None when it carries nothing."""
    if isinstance(raw, str):
        raw = {"url": raw} if not raw.startswith("data:") else {"data": raw}
    raw = _dict(raw)
    # Veo wraps the file as {"video": {"uri": ..., "mimeType": ...}}
    if isinstance(raw.get("video"), dict):
        raw = {**raw["video"], **{k: v for k, v in raw.items() if k != "video"}}
        default_kind = "video"
    inline = _dict(raw.get("inlineData") or raw.get("inline_data"))
    if inline:
        raw = {**inline, **{k: v for k, v in raw.items() if k not in ("inlineData", "inline_data")}}

    url = _str(raw.get("url")) or _str(raw.get("uri")) or _str(raw.get("gcsUri"))
    data = (_str(raw.get("data")) or _str(raw.get("base64"))
            or _str(raw.get("bytesBase64Encoded")) or _str(raw.get("videoBytes")))
    frames = [f for f in (_frame(x) for x in _list(raw.get("frames"))) if f is not None]
    if not url and not data and not frames:
        return None

    poster_url = _str(raw.get("posterUrl"))
    poster_data = _str(raw.get("posterBase64"))
    poster = raw.get("posterImage") or raw.get("poster")
    if isinstance(poster, dict):
        poster_url = poster_url or _str(poster.get("url")) or _str(poster.get("uri"))
        poster_data = poster_data or _str(poster.get("data")) or _str(poster.get("base64"))
    elif poster_text := _str(poster):
        if poster_text.startswith("data:"):
            poster_data = poster_data or poster_text
        else:
            poster_url = poster_url or poster_text

    frame_rate = _num(raw.get("frameRate")) or _num(raw.get("fps"))
    duration = _num(raw.get("durationSeconds")) or _num(raw.get("duration"))
    if duration is None and frames and frame_rate:
        duration = len(frames) / frame_rate

    kind = _kind_for(raw, default_kind)
    metadata = _dict(raw.get("metadata"))
    return MediaAsset(
        id=_str(raw.get("id")) or f"{kind}-{index}",
        kind=kind,
        mime_type=_str(raw.get("mimeType")) or _str(raw.get("mime_type")) or _str(raw.get("contentType")),
        url=url,
        base64=data,
        caption=_str(raw.get("caption")) or _str(raw.get("altText")) or _str(raw.get("alt")),
        poster_url=poster_url,
        poster_base64=poster_data,
        frames=frames,
        duration_seconds=duration,
        frame_rate=frame_rate,
        metadata=dict(metadata),
    )


def _media_sources(payload: dict) -> Iterator[tuple[Any, str]]:
    for key, kind in (("images", "image"), ("videos", "video"), ("audio", "audio"), ("media", "unknown")):
        for entry in _list(payload.get(key)):
            yield entry, kind
    for entry in _list(payload.get("generatedVideos")):
        yield entry, "video"
    for entry in _list(_dict(payload.get("response")).get("generatedVideos")):
        yield entry, "video"

    candidate_lists = [payload.get("candidates")]
    for prediction in _list(payload.get("predictions")):
        prediction = _dict(prediction)
        candidate_lists.append(prediction.get("candidates"))
        for entry in _list(prediction.get("generatedVideos")):
            yield entry, "video"
        if isinstance(prediction.get("video"), dict) or _str(prediction.get("bytesBase64Encoded")):
            yield prediction, "video"

    for candidates in candidate_lists:
        for candidate in _list(candidates):
            for part in _list(_dict(_dict(candidate).get("content")).get("parts")):
                part = _dict(part)
                if part.get("inlineData") or part.get("inline_data"):
                    yield part, "image"


def extract_media(payload: dict) -> list[MediaAsset]:
    assets = []
    for raw, kind in _media_sources(payload):
        asset = normalize_asset(raw, kind, len(assets))
        if asset is not None:
            assets.append(asset)
    # Videos can also arrive as a single top-level entry
    if isinstance(payload.get("video"), (dict, str)):
        asset = normalize_asset(payload["video"], "video", len(assets))
        if asset is not None:
            assets.append(asset)
    return assets


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _raw_text(payload: dict) -> str | None:
    return _str(payload.get("text")) or _str(_dict(payload.get("metadata")).get("rawText"))


def _map_image(payload: dict, out: DirectorCoreResult) -> None:
    prompt_text = _str(payload.get("promptText"))
    raw = _raw_text(payload)
    if prompt_text:
        out.result = prompt_text
        out.text = prompt_text
        out.fallback_text = prompt_text
        return

    out.text = raw
    out.fallback_text = raw
    if raw and (parsed := parse_structured_text(raw)) is not None:
        out.metadata["sections"] = parsed.to_dict()
        out.result = parsed.positive_prompt or None
        if not out.result:
            log.warning("Image reply had sections but no Positive Prompt")
    elif raw:
        # Unstructured text is the prompt itself
        out.result = raw.strip()


def _map_plan(payload: dict, out: DirectorCoreResult, extractors, accept) -> None:
    result, source = run_chain(payload, extractors, accept)
    raw = _raw_text(payload) or source
    if result is None:
        log.warning("No %s candidate parsed; returning raw text only", out.mode)
        out.fallback_text = raw
        out.text = raw
        return
    out.result = result
    out.text = raw or json.dumps(result, ensure_ascii=False)
    if source:
        out.metadata.setdefault("rawText", source)


def map_director_core_success(payload: Any, mode: str, loop_length: int | None = None) -> DirectorCoreResult:
    """Normalize a raw provider success payload for ``mode``. Never raises."""
    payload = _dict(payload)
    out = DirectorCoreResult(
        success=True,
        mode=mode,
        provider=_str(payload.get("provider")),
        metadata=dict(_dict(payload.get("metadata"))),
    )
    try:
        if mode == "image_prompt":
            _map_image(payload, out)
        elif mode == "video_plan":
            _map_plan(payload, out, VIDEO_EXTRACTORS, accept_video_plan)
            if issues := video_plan_issues(out.result):
                log.warning("Video plan has %d schema issue(s)", len(issues))
                out.metadata["planIssues"] = issues
        elif mode == "loop_sequence":
            _map_plan(payload, out, LOOP_EXTRACTORS, loop_acceptor(loop_length))
        out.media = extract_media(payload)
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        log.exception("Normalizing %s payload failed: %s", mode, e)
        out.fallback_text = out.fallback_text or _raw_text(payload)
    if model := _str(payload.get("model")):
        out.metadata.setdefault("model", model)
    return out
