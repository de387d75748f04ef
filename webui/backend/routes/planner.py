"""Script segmentation and video-plan gate routes.

The planner session lives with the client: ``/segment`` hands it out and
``/check`` takes it back with answers applied.
"""
from __future__ import annotations

from litestar import post

from directorcore.errors import RequestValidationError
from directorcore.planner import PlannerSession
from webui.backend.models import PlannerCheckRequest, PlannerCheckResponse, SegmentRequest


@post("/api/planner/segment", status_code=200)
async def segment_script(data: SegmentRequest) -> dict:
    if not data.script.strip():
        raise RequestValidationError(["script: must not be empty"])
    session = PlannerSession()
    session.segment(data.script)
    return session.to_dict()


@post("/api/planner/check", status_code=200)
async def check_gate(data: PlannerCheckRequest) -> PlannerCheckResponse:
    try:
        session = PlannerSession.from_dict(data.session)
    except (KeyError, TypeError, ValueError) as e:
        raise RequestValidationError([f"session: malformed planner session ({e})"]) from e

    errors = []
    for question_id, answer in data.answers.items():
        try:
            session.answer(question_id, answer)
        except KeyError:
            errors.append(f"answers.{question_id}: unknown question")
    if errors:
        raise RequestValidationError(errors)

    if data.approve_energy_curve and session.beats:
        session.approve_energy_curve()

    reasons = session.gate_reasons(data.script)
    return PlannerCheckResponse(
        can_submit=not reasons,
        reasons=reasons,
        planner_context=session.planner_context(),
        session=session.to_dict(),
    )
