"""Typed context and payload schemas for escalation resolution.

An escalation's context blob is stored loosely typed. Each escalation type
that can be resolved into an action declares the context fields it relies
on, the action it resolves into, and which payload fields the context is
authoritative for.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.action_authorization import ActionKind


# Escalation contexts


class MarkSubmissionContext(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    workflow_id: str = Field(min_length=1)
    subject: str | None = None
    class_level: str | None = None


class MarkAmendmentContext(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    student_id: str | None = None
    student_name: str | None = None
    subject: str | None = None
    term_id: str | None = None
    component: str | None = None
    new_score: float | None = None
    teacher_id: str | None = None
    class_level: str | None = None

    @model_validator(mode="after")
    def require_student(self) -> "MarkAmendmentContext":
        if not self.student_id and not self.student_name:
            raise ValueError("amendment context must identify the student")
        return self


class ClassResultReleaseContext(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    class_level: str = Field(min_length=1)
    term_id: str | None = None


class AttendanceAbsenceContext(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    absentees: list[dict[str, Any]] = Field(min_length=1)


class PaymentVerificationContext(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    payment_id: str = Field(min_length=1)
    student_id: str | None = None
    amount: float | None = None


# Action payloads


class ApproveMarkSubmissionPayload(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    workflow_id: str = Field(min_length=1)
    subject: str | None = None
    class_level: str | None = None


class ApproveMarkAmendmentPayload(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    student_id: str | None = None
    student_name: str | None = None
    subject: str | None = None
    term_id: str | None = None
    component: str | None = None
    new_score: float | None = None
    teacher_id: str | None = None
    class_level: str | None = None


class ReleaseResultsPayload(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    class_level: str = Field(min_length=1)
    term_id: str = "current"


class AbsenteeRef(BaseModel):
    name: str


class EngageParentsPayload(BaseModel):
    absentees: list[AbsenteeRef] = Field(min_length=1)
    reason: str = "Student absence - contacting parent"

    @field_validator("absentees", mode="before")
    @classmethod
    def absentee_names(cls, value: Any) -> Any:
        # Context rows carry student_name; callers may send name
        if not isinstance(value, list):
            return value
        return [
            {"name": item.get("student_name") or item.get("name")} if isinstance(item, dict) else item
            for item in value
        ]


class ConfirmPaymentPayload(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    payment_id: str = Field(min_length=1)
    student_id: str | None = None
    amount: float | None = None


ACTION_PAYLOADS: Mapping[ActionKind, type[BaseModel]] = MappingProxyType({
    ActionKind.APPROVE_MARK_SUBMISSION: ApproveMarkSubmissionPayload,
    ActionKind.APPROVE_MARK_AMENDMENT: ApproveMarkAmendmentPayload,
    ActionKind.RELEASE_RESULTS: ReleaseResultsPayload,
    ActionKind.ENGAGE_PARENTS: EngageParentsPayload,
    ActionKind.CONFIRM_PAYMENT: ConfirmPaymentPayload,
})


class AffirmationStyle(str, Enum):
    """How an affirmative authority reply is recognised."""

    APPROVAL = "APPROVAL"
    PARENT_ENGAGEMENT = "PARENT_ENGAGEMENT"


@dataclass(frozen=True)
class ResolutionBinding:
    escalation_type: str
    action: ActionKind
    context_model: type[BaseModel]
    # Context always wins for these
    authoritative_fields: tuple[str, ...]
    # Context only fills these when the caller left them empty
    fallback_fields: tuple[str, ...] = ()
    # Explicit actions inference may replace
    replaceable_actions: frozenset[ActionKind] = frozenset({ActionKind.NONE})
    affirmation: AffirmationStyle = AffirmationStyle.APPROVAL


RESOLUTION_BINDINGS: Mapping[str, ResolutionBinding] = MappingProxyType({
    "MARK_SUBMISSION_APPROVAL": ResolutionBinding(
        escalation_type="MARK_SUBMISSION_APPROVAL",
        action=ActionKind.APPROVE_MARK_SUBMISSION,
        context_model=MarkSubmissionContext,
        authoritative_fields=("workflow_id",),
        fallback_fields=("subject", "class_level"),
    ),
    "MARK_AMENDMENT": ResolutionBinding(
        escalation_type="MARK_AMENDMENT",
        action=ActionKind.APPROVE_MARK_AMENDMENT,
        context_model=MarkAmendmentContext,
        authoritative_fields=(
            "student_id",
            "student_name",
            "subject",
            "term_id",
            "component",
            "new_score",
            "teacher_id",
            "class_level",
        ),
        # Upstream parsers often emit a near-miss action for amendments
        replaceable_actions=frozenset({
            ActionKind.NONE,
            ActionKind.CONFIRM_AMENDMENT,
            ActionKind.PROPOSE_AMENDMENT,
            ActionKind.CLOSE_ESCALATION,
            ActionKind.APPROVE_MARK_SUBMISSION,
        }),
    ),
    "CLASS_RESULT_RELEASE": ResolutionBinding(
        escalation_type="CLASS_RESULT_RELEASE",
        action=ActionKind.RELEASE_RESULTS,
        context_model=ClassResultReleaseContext,
        authoritative_fields=("class_level", "term_id"),
    ),
    "ATTENDANCE_ABSENCE": ResolutionBinding(
        escalation_type="ATTENDANCE_ABSENCE",
        action=ActionKind.ENGAGE_PARENTS,
        context_model=AttendanceAbsenceContext,
        authoritative_fields=("absentees",),
        affirmation=AffirmationStyle.PARENT_ENGAGEMENT,
    ),
    "PAYMENT_VERIFICATION": ResolutionBinding(
        escalation_type="PAYMENT_VERIFICATION",
        action=ActionKind.CONFIRM_PAYMENT,
        context_model=PaymentVerificationContext,
        authoritative_fields=("payment_id", "student_id", "amount"),
    ),
})


def get_binding(escalation_type: str | None) -> ResolutionBinding | None:
    if not escalation_type:
        return None
    return RESOLUTION_BINDINGS.get(escalation_type.strip().upper())
