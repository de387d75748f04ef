"""Script segmentation into beats, energy scoring and clarifying questions.

A video plan is only requested once the author has answered every
question for the exact script on screen and approved the energy curve.
:class:`PlannerSession` holds that gate; it lives with the caller (CLI
process or HTTP client), never on the server.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field

MAX_BEATS = 10
MIN_PARAGRAPH_BEATS = 4
SENTENCE_BUCKETS = 8
TITLE_MAX_CHARS = 64
TITLE_FALLBACK_WORDS = 8
ELLIPSIS = "…"

# Energy classification thresholds (score is relative to the average beat)
GROUNDED_BELOW = 0.9
SURGE_ABOVE = 1.3
PUNCTUATION_BONUS = 0.1
MOMENTUM_BONUS = 0.2

MOMENTUM_KEYWORDS = (
    "surge", "climax", "urgent", "explode", "erupt", "rush", "race",
    "chase", "battle", "breakthrough", "peak", "sprint", "crescendo",
)

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_FIRST_SENTENCE_RE = re.compile(r"^(.+?[.!?])(?:\s|$)", re.S)


def _inflections(word: str) -> str:
    if word.endswith("e"):
        return word[:-1] + "(?:e|es|ed|ing)"
    return word + "(?:s|es|ed|ing)?"


# Whole words plus their plain inflections ("racing" counts, "racetrack" does not)
_MOMENTUM_RE = re.compile(r"\b(?:" + "|".join(map(_inflections, MOMENTUM_KEYWORDS)) + r")\b", re.I)


@dataclass
class PlannerQuestion:
    id: str
    prompt: str
    kind: str  # "motif" or "transition"
    answer: str = ""

    @property
    def answered(self) -> bool:
        return bool(self.answer.strip())


@dataclass(frozen=True)
class PlannerBeat:
    order: int  # 1-based
    title: str
    excerpt: str
    energy: str  # grounded | rising | surge
    energy_score: float
    questions: tuple[PlannerQuestion, ...] = ()

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "title": self.title,
            "excerpt": self.excerpt,
            "energy": self.energy,
            "energyScore": self.energy_score,
            "questions": [
                {"id": q.id, "prompt": q.prompt, "kind": q.kind, "answer": q.answer}
                for q in self.questions
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlannerBeat":
        return cls(
            order=int(data["order"]),
            title=str(data["title"]),
            excerpt=str(data["excerpt"]),
            energy=str(data["energy"]),
            energy_score=float(data["energyScore"]),
            questions=tuple(
                PlannerQuestion(id=str(q["id"]), prompt=str(q["prompt"]),
                                kind=str(q.get("kind", "motif")), answer=str(q.get("answer") or ""))
                for q in data.get("questions", [])
            ),
        )


# ---------------------------------------------------------------------------
# Segmentation
# ---------------------------------------------------------------------------

def _split_sentences(text: str) -> list[str]:
    flat = " ".join(text.split())
    return [s.strip() for s in _SENTENCE_RE.split(flat) if s.strip()]


def _even_buckets(items: list[str], count: int) -> list[str]:
    base, extra = divmod(len(items), count)
    buckets, start = [], 0
    for i in range(count):
        size = base + (1 if i < extra else 0)
        buckets.append(" ".join(items[start:start + size]))
        start += size
    return buckets


def split_segments(script: str) -> list[str]:
    """Split ``script`` into 1-10 raw text segments (empty list for blank input)."""
    text = script.strip()
    if not text:
        return []

    segments = [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]
    if len(segments) < MIN_PARAGRAPH_BEATS:
        sentences = _split_sentences(text)
        segments = _even_buckets(sentences, min(SENTENCE_BUCKETS, len(sentences)))

    # Merge the shortest adjacent pair until the count is bounded
    while len(segments) > MAX_BEATS:
        i = min(range(len(segments) - 1), key=lambda j: len(segments[j]) + len(segments[j + 1]))
        segments[i:i + 2] = [f"{segments[i]}\n\n{segments[i + 1]}"]

    return segments


def word_count(text: str) -> int:
    return len(text.split())


def energy_score(text: str, average_words: float) -> float:
    score = word_count(text) / average_words if average_words else 1.0
    score += PUNCTUATION_BONUS * (text.count("!") + text.count("?"))
    if _MOMENTUM_RE.search(text):
        score += MOMENTUM_BONUS
    return score


def classify_energy(score: float) -> str:
    if score < GROUNDED_BELOW:
        return "grounded"
    if score > SURGE_ABOVE:
        return "surge"
    return "rising"


def beat_title(text: str) -> str:
    flat = " ".join(text.split())
    match = _FIRST_SENTENCE_RE.match(flat)
    title = match.group(1) if match else " ".join(flat.split()[:TITLE_FALLBACK_WORDS])
    if len(title) > TITLE_MAX_CHARS:
        title = title[:TITLE_MAX_CHARS - 1].rstrip() + ELLIPSIS
    return title


def _question_id(order: int, kind: str) -> str:
    return f"beat-{order}-{kind}-{uuid.uuid4().hex[:8]}"


def segment_script_into_beats(script: str) -> list[PlannerBeat]:
    """Segment ``script`` into scored beats, each with its clarifying questions."""
    segments = split_segments(script)
    if not segments:
        return []

    average = sum(word_count(s) for s in segments) / len(segments)
    titles = [beat_title(s) for s in segments]

    beats = []
    for i, segment in enumerate(segments):
        order = i + 1
        score = energy_score(segment, average)
        questions = [PlannerQuestion(
            id=_question_id(order, "motif"),
            prompt=f'What visual motif or color palette should anchor "{titles[i]}"?',
            kind="motif",
        )]
        if i < len(segments) - 1:
            questions.append(PlannerQuestion(
                id=_question_id(order, "transition"),
                prompt=f'How should "{titles[i]}" transition into "{titles[i + 1]}"?',
                kind="transition",
            ))
        beats.append(PlannerBeat(
            order=order,
            title=titles[i],
            excerpt=segment,
            energy=classify_energy(score),
            energy_score=round(score, 3),
            questions=tuple(questions),
        ))
    return beats


# ---------------------------------------------------------------------------
# Session / gate
# ---------------------------------------------------------------------------

@dataclass
class PlannerSession:
    script: str | None = None
    beats: list[PlannerBeat] = field(default_factory=list)
    curve_approved: bool = False

    def segment(self, script: str) -> list[PlannerBeat]:
        """Segment ``script``; a byte-identical script keeps existing answers."""
        if self.script == script and self.beats:
            return self.beats
        self.script = script
        self.beats = segment_script_into_beats(script)
        self.curve_approved = False
        return self.beats

    def questions(self) -> list[PlannerQuestion]:
        return [q for beat in self.beats for q in beat.questions]

    def answer(self, question_id: str, text: str) -> PlannerQuestion:
        for question in self.questions():
            if question.id == question_id:
                question.answer = text
                return question
        raise KeyError(f"Unknown planner question: {question_id}")

    def unanswered(self) -> list[PlannerQuestion]:
        return [q for q in self.questions() if not q.answered]

    def energy_curve(self) -> list[str]:
        return [beat.energy for beat in self.beats]

    def energy_curve_summary(self) -> str:
        return " -> ".join(f"{b.order}. {b.title} [{b.energy} {b.energy_score:.2f}]" for b in self.beats)

    def approve_energy_curve(self) -> None:
        if not self.beats:
            raise ValueError("Nothing to approve: segment a script first")
        self.curve_approved = True

    def gate_reasons(self, script: str) -> list[str]:
        """Everything still blocking a video-plan request for ``script``."""
        if not self.beats or self.script is None:
            return ["script has not been segmented"]
        reasons = []
        if script != self.script:
            reasons.append("script changed since segmentation")
        missing = len(self.unanswered())
        if missing:
            reasons.append(f"{missing} clarifying question(s) unanswered")
        if not self.curve_approved:
            reasons.append("energy curve not approved")
        return reasons

    def can_submit_video_plan(self, script: str) -> bool:
        return not self.gate_reasons(script)

    def planner_context(self) -> str:
        """Answers and pacing, formatted for the video-plan request."""
        if not self.beats:
            return ""
        lines = [f"Energy curve: {self.energy_curve_summary()}"]
        for beat in self.beats:
            lines.append(f"Beat {beat.order} ({beat.energy}): {beat.title}")
            for q in beat.questions:
                if q.answered:
                    lines.append(f"  {q.kind}: {q.answer.strip()}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "script": self.script,
            "beats": [beat.to_dict() for beat in self.beats],
            "energyCurve": self.energy_curve(),
            "energyCurveSummary": self.energy_curve_summary(),
            "curveApproved": self.curve_approved,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlannerSession":
        return cls(
            script=data.get("script"),
            beats=[PlannerBeat.from_dict(b) for b in data.get("beats") or []],
            curve_approved=bool(data.get("curveApproved", False)),
        )


def can_submit_video_plan(session: PlannerSession, script: str) -> bool:
    return session.can_submit_video_plan(script)
