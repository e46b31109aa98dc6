"""Escalation API schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EscalationCreate(BaseModel):
    """Pause request from an originating agent."""

    origin_agent: str = Field(max_length=10)
    escalation_type: str = Field(min_length=1, max_length=100)
    from_address: str
    session_id: str
    pause_message_id: str
    reason: str
    what_agent_needed: str
    priority: str | None = None
    user_name: str | None = None
    user_role: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    conversation_summary: str | None = None
    class_level: str | None = None
    subject: str | None = None
    term_id: str | None = None
    authority_address: str | None = None


class EscalationCreated(BaseModel):
    id: str


class EscalationResponse(BaseModel):
    """Escalation response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: int
    origin_agent: str
    escalation_type: str
    priority: str
    state: str
    round_number: int
    from_address: str
    user_name: str | None
    user_role: str | None
    reason: str
    what_agent_needed: str
    context: dict[str, Any]
    conversation_summary: str | None
    class_level: str | None
    subject: str | None
    term_id: str | None
    decision: str | None
    instruction: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    resumed_at: datetime | None
    resume_marker: str | None
    failure_reason: str | None
    execution_status: str
    executed_action: str | None
    execution_summary: str | None
    created_at: datetime


class RoundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    round_number: int
    round_type: str
    authority_request: str | None
    authority_response: str | None
    decision: str | None
    instruction: str | None
    responder_address: str | None
    created_at: datetime


class BriefRequest(BaseModel):
    conversation_history: list[str] = Field(default_factory=list)


class BriefResponse(BaseModel):
    escalation: EscalationResponse
    situation: str
    context: str
    rounds: list[RoundResponse]


class RoundCreate(BaseModel):
    """An authority exchange to record."""

    round_type: str
    authority_response: str | None = None
    authority_request: str | None = None
    decision: str | None = None
    instruction: str | None = None


class RoundRecorded(BaseModel):
    applied: bool
    round_number: int | None
    state: str | None
    reason: str | None = None


class FailRequest(BaseModel):
    reason: str = Field(min_length=1)


class ResumeRequest(BaseModel):
    resume_marker: str = Field(min_length=1)


class TransitionResponse(BaseModel):
    applied: bool


class FocusResponse(BaseModel):
    authority_address: str
    escalation: EscalationResponse | None


class DispatchRequest(BaseModel):
    """Parsed authority reply to act on."""

    text: str = ""
    action: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    decision: str | None = None
    intent_clear: bool = False
    authority_acknowledged: bool = False


class CorrectionResponse(BaseModel):
    field: str
    supplied: Any
    corrected: Any


class DispatchResponse(BaseModel):
    status: str
    escalation_id: str
    action: str | None
    inferred: bool
    payload: dict[str, Any] | None
    corrections: list[CorrectionResponse]
    reason: str | None
    summary: str | None
