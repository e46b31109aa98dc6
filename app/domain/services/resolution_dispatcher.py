"""Resolution dispatcher: turns a resolved escalation into an executed action."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.action_authorization import ActionAuthorizer, ActionKind
from app.domain.schemas.resolution import ACTION_PAYLOADS, ResolutionBinding, get_binding
from app.domain.services.approval_inference import NEGATIVE_DECISIONS, infer_action
from app.domain.services.audit_service import EscalationAuditService
from app.infrastructure.notifications import Notifier, get_notifier
from app.persistence.models.audit_log import EscalationAuditEvent
from app.persistence.models.escalation import Escalation, EscalationState, ExecutionStatus
from app.persistence.repositories.escalation_repository import EscalationRepository

logger = logging.getLogger(__name__)


@dataclass
class AuthorityOutput:
    """What the authority-side parser extracted from the authority's reply."""

    text: str = ""
    action: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    decision: str | None = None
    intent_clear: bool = False
    authority_acknowledged: bool = False


@dataclass
class ExecutionResult:
    success: bool
    summary: str


ActionExecutor = Callable[[int, Any], Awaitable[ExecutionResult]]


class DispatchStatus(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    NOT_RESOLVED = "NOT_RESOLVED"
    ALREADY_EXECUTED = "ALREADY_EXECUTED"
    NO_ACTION = "NO_ACTION"
    INVALID_CONTEXT = "INVALID_CONTEXT"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    DENIED = "DENIED"
    NO_EXECUTOR = "NO_EXECUTOR"
    FAILED = "FAILED"
    EXECUTED = "EXECUTED"


@dataclass(frozen=True)
class IdentifierCorrection:
    field: str
    supplied: Any
    corrected: Any


@dataclass
class DispatchOutcome:
    status: DispatchStatus
    escalation_id: str
    action: str | None = None
    inferred: bool = False
    payload: dict[str, Any] | None = None
    corrections: list[IdentifierCorrection] = field(default_factory=list)
    reason: str | None = None
    summary: str | None = None

    @property
    def executed(self) -> bool:
        return self.status is DispatchStatus.EXECUTED


def apply_context_identifiers(
    binding: ResolutionBinding,
    payload: dict[str, Any],
    context: dict[str, Any],
) -> tuple[dict[str, Any], list[IdentifierCorrection]]:
    """Overwrite caller identifiers with the escalation context's values.

    Authoritative fields always take the context value when the context has
    one. Fallback fields only fill gaps. Empty values are dropped.
    """
    merged = dict(payload or {})
    corrections = []

    for name in binding.authoritative_fields:
        stored = context.get(name)
        if stored is None:
            continue
        supplied = merged.get(name)
        if supplied is not None and supplied != stored:
            corrections.append(IdentifierCorrection(name, supplied, stored))
        merged[name] = stored

    for name in binding.fallback_fields:
        if merged.get(name) in (None, "") and context.get(name) is not None:
            merged[name] = context[name]

    return {k: v for k, v in merged.items() if v is not None}, corrections


def override_from_context(
    payload: dict[str, Any],
    context: dict[str, Any],
    caller_owned: tuple[str, ...] = (),
) -> tuple[dict[str, Any], list[IdentifierCorrection]]:
    """Overwrite every payload key the context also carries, whatever the action.

    Only ``caller_owned`` keys keep the caller's value.
    """
    merged = dict(payload)
    corrections = []
    for name, supplied in payload.items():
        if name in caller_owned or name not in context:
            continue
        stored = context[name]
        if stored is None or supplied == stored:
            continue
        corrections.append(IdentifierCorrection(name, supplied, stored))
        merged[name] = stored
    return merged, corrections


class ResolutionDispatcher:
    """Executes the decision of a RESOLVED escalation.

    Every action, explicit or inferred, passes ActionAuthorizer before its
    executor runs. Execution failures are recorded on the escalation and
    reported, never retried; the escalation stays RESOLVED.
    """

    def __init__(
        self,
        session: AsyncSession,
        authorizer: ActionAuthorizer,
        executors: Mapping[ActionKind, ActionExecutor] | None = None,
        notifier: Notifier | None = None,
        audit_service: EscalationAuditService | None = None,
    ) -> None:
        self.session = session
        self.escalation_repo = EscalationRepository(session)
        self.authorizer = authorizer
        self.executors = dict(executors or {})
        self.notifier = notifier or get_notifier()
        self.audit = audit_service or EscalationAuditService(session)

    async def dispatch(
        self,
        escalation_id: str,
        tenant_id: int,
        output: AuthorityOutput,
        role: str | None,
        authority_address: str | None = None,
    ) -> DispatchOutcome:
        """Resolve, authorize and execute the action behind an escalation.

        Args:
            escalation_id: Escalation to act on
            tenant_id: Tenant the caller is acting for
            output: Parsed authority reply
            role: The authority's role
            authority_address: Authority contact address for the outcome report

        Returns:
            DispatchOutcome; only PersistenceError is raised
        """
        escalation = await self.escalation_repo.get(escalation_id, tenant_id=tenant_id, for_update=True)
        if escalation is None:
            return DispatchOutcome(DispatchStatus.NOT_FOUND, escalation_id)

        if escalation.state != EscalationState.RESOLVED.value:
            await self._release(escalation_id)
            return DispatchOutcome(
                DispatchStatus.NOT_RESOLVED, escalation_id, reason=f"Escalation is {escalation.state}"
            )
        if escalation.execution_status == ExecutionStatus.EXECUTED.value:
            await self._release(escalation_id)
            return DispatchOutcome(
                DispatchStatus.ALREADY_EXECUTED,
                escalation_id,
                action=escalation.executed_action,
                summary=escalation.execution_summary,
            )

        outcome = await self._dispatch_resolved(escalation, tenant_id, output, role)

        if outcome.status in (DispatchStatus.EXECUTED, DispatchStatus.FAILED):
            await self._record_execution(escalation, outcome)
            requester_address = escalation.from_address
            await self.audit.log_execution(
                EscalationAuditEvent.ACTION_EXECUTED if outcome.executed else EscalationAuditEvent.ACTION_FAILED,
                escalation,
                authority_address,
                outcome.action,
                outcome.summary,
                {"inferred": outcome.inferred, "corrections": [c.field for c in outcome.corrections]},
            )
            await self._report(
                escalation_id, tenant_id, requester_address, outcome, authority_address
            )
        elif outcome.status is DispatchStatus.DENIED:
            await self._release(escalation_id)
            await self.audit.log_execution(
                EscalationAuditEvent.ACTION_DENIED,
                escalation,
                authority_address,
                outcome.action,
                outcome.reason,
            )
        else:
            await self._release(escalation_id)

        return outcome

    async def _dispatch_resolved(
        self,
        escalation: Escalation,
        tenant_id: int,
        output: AuthorityOutput,
        role: str | None,
    ) -> DispatchOutcome:
        escalation_id = escalation.id
        context = dict(escalation.context or {})
        binding = get_binding(escalation.escalation_type)

        explicit = ActionKind.parse(output.action)
        if output.action and explicit is None:
            # Unknown names go straight to the gate, which denies them
            result = self.authorizer.authorize(output.action, role)
            return DispatchOutcome(
                DispatchStatus.DENIED, escalation_id, action=str(output.action), reason=result.reason
            )

        inference = infer_action(
            binding,
            explicit,
            output.text,
            output.decision or escalation.decision,
            context,
            intent_clear=output.intent_clear,
            authority_acknowledged=output.authority_acknowledged,
        )
        action = inference.action
        if action is None or action is ActionKind.NONE:
            return DispatchOutcome(DispatchStatus.NO_ACTION, escalation_id, reason="No action to execute")

        negative = next(
            (d for d in (escalation.decision, output.decision) if d and d.strip().upper() in NEGATIVE_DECISIONS),
            None,
        )
        if negative is not None and binding is not None and action is binding.action:
            reason = f"Decision '{negative.strip().upper()}' does not permit '{action.value}'"
            logger.warning(f"Escalation {escalation_id}: {reason}")
            return DispatchOutcome(
                DispatchStatus.DENIED,
                escalation_id,
                action=action.value,
                inferred=inference.inferred,
                reason=reason,
            )

        payload = dict(output.payload or {})
        corrections: list[IdentifierCorrection] = []
        if binding is not None and action is binding.action:
            try:
                binding.context_model.model_validate(context)
            except ValidationError as e:
                logger.warning(f"Escalation {escalation_id} context invalid for {action.value}: {e}")
                return DispatchOutcome(
                    DispatchStatus.INVALID_CONTEXT,
                    escalation_id,
                    action=action.value,
                    inferred=inference.inferred,
                    reason=str(e),
                )

            payload, corrections = apply_context_identifiers(binding, payload, context)

        payload, overridden = override_from_context(
            payload, context, binding.fallback_fields if binding is not None else ()
        )
        corrections.extend(overridden)
        for correction in corrections:
            logger.warning(
                f"Escalation {escalation_id}: {correction.field} corrected from context",
                extra={"supplied": correction.supplied, "corrected": correction.corrected},
            )

        payload_model = ACTION_PAYLOADS.get(action)
        typed_payload: BaseModel | dict[str, Any] = payload
        if payload_model is not None:
            try:
                typed_payload = payload_model.model_validate(payload)
            except ValidationError as e:
                return DispatchOutcome(
                    DispatchStatus.INVALID_PAYLOAD,
                    escalation_id,
                    action=action.value,
                    inferred=inference.inferred,
                    payload=payload,
                    corrections=corrections,
                    reason=str(e),
                )
            payload = typed_payload.model_dump()

        authorization = self.authorizer.authorize(
            action,
            role,
            intent_clear=inference.intent_clear,
            authority_acknowledged=inference.authority_acknowledged,
        )
        if not authorization.authorized:
            logger.info(f"Action {action.value} denied for escalation {escalation_id}: {authorization.reason}")
            return DispatchOutcome(
                DispatchStatus.DENIED,
                escalation_id,
                action=action.value,
                inferred=inference.inferred,
                payload=payload,
                corrections=corrections,
                reason=authorization.reason,
            )

        executor = self.executors.get(action)
        if executor is None:
            logger.warning(f"No executor registered for {action.value}")
            return DispatchOutcome(
                DispatchStatus.NO_EXECUTOR,
                escalation_id,
                action=action.value,
                inferred=inference.inferred,
                payload=payload,
                corrections=corrections,
                reason=f"No executor registered for {action.value}",
            )

        try:
            result = await executor(tenant_id, typed_payload)
        except Exception as e:
            logger.error(f"Executor for {action.value} raised on escalation {escalation_id}: {e}", exc_info=True)
            result = ExecutionResult(success=False, summary=f"{action.value} failed: {e}")

        return DispatchOutcome(
            DispatchStatus.EXECUTED if result.success else DispatchStatus.FAILED,
            escalation_id,
            action=action.value,
            inferred=inference.inferred,
            payload=payload,
            corrections=corrections,
            summary=result.summary,
        )

    async def _record_execution(self, escalation: Escalation, outcome: DispatchOutcome) -> None:
        escalation.execution_status = (
            ExecutionStatus.EXECUTED.value if outcome.executed else ExecutionStatus.FAILED.value
        )
        escalation.executed_action = outcome.action
        escalation.execution_summary = outcome.summary
        escalation.executed_at = datetime.utcnow()
        await self.escalation_repo.save(escalation, "record execution outcome")
        if not outcome.executed:
            logger.warning(
                f"Escalation {escalation.id} resolved but {outcome.action} failed: {outcome.summary}"
            )

    async def _release(self, escalation_id: str) -> None:
        # Ends the read transaction so the row lock is not held
        await self.escalation_repo.commit(f"dispatch escalation {escalation_id}")

    async def _report(
        self,
        escalation_id: str,
        tenant_id: int,
        requester_address: str | None,
        outcome: DispatchOutcome,
        authority_address: str | None,
    ) -> None:
        """Relay the outcome to the authority and the requester."""
        recipients = [a for a in (authority_address, requester_address) if a]

        text = outcome.summary or f"{outcome.action}: {outcome.status.value}"
        for address in recipients:
            try:
                await self.notifier.send(tenant_id, address, text)
            except Exception as e:
                logger.error(f"Failed to report outcome of {escalation_id} to {address}: {e}")
