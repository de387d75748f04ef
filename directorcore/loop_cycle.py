"""Incremental loop generation: one new cycle per call.

The caller keeps the running log of cycles and sends it back as
``previousCycles``; each reply extends the loop by exactly one beat with
its end frame, so a loop can run on indefinitely.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError

from schemas import NextLoopCycle

from .errors import MalformedProviderResponse, RequestValidationError
from .normalizer import coerce_json
from .prompts import LOOP_CYCLE_SYSTEM_PROMPT, build_loop_cycle_prompt
from .validation import OptionalText, RequiredText, StringList, format_errors

log = logging.getLogger(__name__)


class LoopCycleRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    visionSeed: RequiredText
    inspirationReferences: OptionalText = None
    startFrames: StringList = Field(default_factory=list)
    previousCycles: List[Dict[str, Any]] = Field(default_factory=list)
    predictiveMode: StrictBool = False


def parse_loop_cycle_request(body: Any) -> LoopCycleRequest:
    if not isinstance(body, dict):
        raise RequestValidationError(["body: must be a JSON object"])
    try:
        return LoopCycleRequest.model_validate(body)
    except ValidationError as e:
        raise RequestValidationError(format_errors(e)) from e


class LoopCycleDirector:
    def __init__(self, provider):
        self.provider = provider

    async def next_cycle(self, request: LoopCycleRequest, api_key: str) -> dict:
        payload = await self.provider.generate(
            LOOP_CYCLE_SYSTEM_PROMPT,
            build_loop_cycle_prompt(request),
            api_key,
            response_schema=NextLoopCycle,
        )
        raw = payload.get("text") if isinstance(payload, dict) else None
        value = coerce_json(raw)
        if not isinstance(value, dict):
            log.error("Loop cycle reply was not a JSON object")
            raise MalformedProviderResponse("Provider reply is not a loop cycle object", raw)

        if value.get("cycle") is None:
            value["cycle"] = len(request.previousCycles) + 1
        try:
            cycle = NextLoopCycle.model_validate(value)
        except ValidationError as e:
            errors = format_errors(e)
            log.error("Loop cycle reply failed validation: %s", "; ".join(errors))
            raise MalformedProviderResponse(f"Provider reply is not a valid loop cycle: {'; '.join(errors)}", raw) from e
        return cycle.model_dump()
