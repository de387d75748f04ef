"""Pydantic request/response models for the Director Core Web API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SegmentRequest(BaseModel):
    script: str


class PlannerCheckRequest(BaseModel):
    session: dict[str, Any]          # as returned by /api/planner/segment
    script: str                      # the script currently on screen
    answers: dict[str, str] = Field(default_factory=dict)  # question id -> answer
    approve_energy_curve: bool = False


class PlannerCheckResponse(BaseModel):
    can_submit: bool
    reasons: list[str]
    planner_context: str
    session: dict[str, Any]


class ProviderStatus(BaseModel):
    configured: bool
    env_var: str | None = None
    masked_key: str = ""
    self_credentialed: bool = False
    headers: list[str] = Field(default_factory=list)


class ServerStatus(BaseModel):
    require_client_key: bool
    chat_provider: str
    chat_models: list[str]
    video_plan_models: list[str]
    providers: dict[str, ProviderStatus]


class ConfigPayload(BaseModel):
    gemini_api_key: str = ""
    google_api_key: str = ""
    veo_api_key: str = ""
    hf_token: str = ""
    gemini_api_url: str = ""
    chat_provider: str = ""
