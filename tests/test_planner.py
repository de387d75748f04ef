import pytest

from directorcore.planner import (
    MAX_BEATS,
    PlannerSession,
    beat_title,
    can_submit_video_plan,
    classify_energy,
    energy_score,
    segment_script_into_beats,
    split_segments,
    word_count,
)

SCRIPT = """Quiet dawn.

The town slowly wakes up today.

Merchants open shutters along the street.

Then the storm arrives and everyone runs for shelter at once."""


def answer_all(session, text="teal fog and brass"):
    for question in session.questions():
        session.answer(question.id, text)


def test_paragraphs_become_beats():
    beats = segment_script_into_beats(SCRIPT)
    assert [b.order for b in beats] == [1, 2, 3, 4]
    assert beats[0].excerpt == "Quiet dawn."
    assert beats[1].title == "The town slowly wakes up today."


def test_energy_classification():
    beats = segment_script_into_beats(SCRIPT)
    assert [b.energy for b in beats] == ["grounded", "rising", "rising", "surge"]
    assert beats[3].energy_score == pytest.approx(11 / 6.25, abs=1e-3)


def test_energy_bonuses():
    assert energy_score("We surge ahead!", 3.0) == pytest.approx(1.3)
    assert energy_score("Calm, still water", 3.0) == pytest.approx(1.0)
    assert energy_score("Why? Why now?", 3.0) == pytest.approx(1.2)
    assert classify_energy(0.89) == "grounded"
    assert classify_energy(1.3) == "rising"
    assert classify_energy(1.31) == "surge"


@pytest.mark.parametrize("text, bonus", [
    ("They race home", True),
    ("Racing hearts", True),
    ("The crowd rushed in", True),
    ("Flames erupting", True),
    ("Battles everywhere", True),
    ("A quiet racetrack", False),
    ("Mount Rushmore at noon", False),
    ("A peaky afternoon", False),
])
def test_momentum_keywords_match_whole_words(text, bonus):
    base = word_count(text) / 3.0
    expected = base + (0.2 if bonus else 0.0)
    assert energy_score(text, 3.0) == pytest.approx(expected)


def test_few_paragraphs_are_regrouped_by_sentence():
    script = " ".join(f"Sentence number {i} ends here." for i in range(20))
    segments = split_segments(script)
    assert len(segments) == 8
    # 20 sentences over 8 buckets: four of three, four of two
    assert [s.count(".") for s in segments] == [3, 3, 3, 3, 2, 2, 2, 2]

    assert split_segments("One. Two. Three.") == ["One.", "Two.", "Three."]


def test_long_scripts_merge_down_to_ten_beats():
    paragraphs = [f"Paragraph {i} " + "word " * (i % 5 + 1) for i in range(17)]
    script = "\n\n".join(p.strip() for p in paragraphs)
    beats = segment_script_into_beats(script)
    assert len(beats) == MAX_BEATS
    assert [b.order for b in beats] == list(range(1, 11))
    # Merging never drops content
    assert " ".join(b.excerpt for b in beats).split() == script.split()


@pytest.mark.parametrize("script", ["x", "Just one line", "A. B. C. D. E. F. G. H. I. J. K. L."])
def test_beat_count_is_bounded(script):
    assert 1 <= len(segment_script_into_beats(script)) <= MAX_BEATS


def test_blank_script_has_no_beats():
    assert segment_script_into_beats("  \n\n ") == []


def test_titles():
    assert beat_title("Rain falls. The city sleeps.") == "Rain falls."
    assert beat_title("one two three four five six seven eight nine ten") == "one two three four five six seven eight"
    long = "A " + "very " * 30 + "long opening sentence."
    title = beat_title(long)
    assert len(title) == 64
    assert title.endswith("…")


def test_questions_per_beat():
    beats = segment_script_into_beats(SCRIPT)
    for beat in beats[:-1]:
        assert [q.kind for q in beat.questions] == ["motif", "transition"]
    assert [q.kind for q in beats[-1].questions] == ["motif"]
    assert beats[0].questions[1].prompt == 'How should "Quiet dawn." transition into "The town slowly wakes up today."?'
    ids = [q.id for b in beats for q in b.questions]
    assert len(set(ids)) == len(ids)


def test_segmentation_is_idempotent_apart_from_ids():
    first = segment_script_into_beats(SCRIPT)
    second = segment_script_into_beats(SCRIPT)
    assert [(b.title, b.excerpt, b.energy) for b in first] == [(b.title, b.excerpt, b.energy) for b in second]


def test_beats_are_frozen():
    beat = segment_script_into_beats(SCRIPT)[0]
    with pytest.raises(AttributeError):
        beat.title = "changed"


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

def test_gate_opens_after_answers_and_approval():
    session = PlannerSession()
    assert not session.can_submit_video_plan(SCRIPT)
    assert session.gate_reasons(SCRIPT) == ["script has not been segmented"]

    session.segment(SCRIPT)
    assert set(session.gate_reasons(SCRIPT)) == {"7 clarifying question(s) unanswered", "energy curve not approved"}

    answer_all(session)
    assert not session.can_submit_video_plan(SCRIPT)
    session.approve_energy_curve()
    assert session.can_submit_video_plan(SCRIPT)
    assert can_submit_video_plan(session, SCRIPT)


def test_whitespace_answer_keeps_gate_closed():
    session = PlannerSession()
    session.segment(SCRIPT)
    answer_all(session)
    session.answer(session.questions()[2].id, "   ")
    session.approve_energy_curve()
    assert not session.can_submit_video_plan(SCRIPT)


def test_changed_script_closes_gate():
    session = PlannerSession()
    session.segment(SCRIPT)
    answer_all(session)
    session.approve_energy_curve()
    edited = SCRIPT + " Thunder follows."
    assert session.gate_reasons(edited) == ["script changed since segmentation"]

    session.segment(edited)
    assert not session.curve_approved
    assert all(not q.answered for q in session.questions())


def test_resegmenting_identical_script_keeps_answers():
    session = PlannerSession()
    session.segment(SCRIPT)
    answer_all(session)
    ids = [q.id for q in session.questions()]
    session.segment(SCRIPT)
    assert [q.id for q in session.questions()] == ids
    assert not session.unanswered()


def test_unknown_question_id():
    session = PlannerSession()
    session.segment(SCRIPT)
    with pytest.raises(KeyError):
        session.answer("beat-9-motif-deadbeef", "x")


def test_cannot_approve_before_segmenting():
    with pytest.raises(ValueError):
        PlannerSession().approve_energy_curve()


def test_planner_context_and_curve_summary():
    session = PlannerSession()
    session.segment(SCRIPT)
    answer_all(session, "  storm-grey palette ")
    assert session.energy_curve() == ["grounded", "rising", "rising", "surge"]
    summary = session.energy_curve_summary()
    assert summary.startswith("1. Quiet dawn. [grounded 0.32]")
    context = session.planner_context()
    assert "Beat 4 (surge): Then the storm arrives" in context
    assert "motif: storm-grey palette" in context


def test_session_survives_dict_transport():
    session = PlannerSession()
    session.segment(SCRIPT)
    answer_all(session)
    session.approve_energy_curve()
    restored = PlannerSession.from_dict(session.to_dict())
    assert restored.can_submit_video_plan(SCRIPT)
    assert restored.beats == session.beats
