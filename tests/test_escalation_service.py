"""Tests for the escalation lifecycle service."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.core.exceptions import InvalidEscalationRequest
from app.domain.services.escalation_service import (
    AuthorityResponse,
    EscalationRequest,
    EscalationService,
)
from app.domain.services.focus_service import FocusService
from app.infrastructure.notifications import Notifier, drain_background_deliveries
from app.persistence.models.escalation import EscalationState, RoundType
from app.persistence.repositories.audit_log_repository import AuditLogRepository


def _request(tenant_id, **overrides) -> EscalationRequest:
    data = dict(
        tenant_id=tenant_id,
        origin_agent="TA",
        escalation_type="MARK_SUBMISSION_APPROVAL",
        from_address="+15551230000",
        session_id="session-1",
        pause_message_id="msg-1",
        reason="Teacher submitted JSS1 mathematics marks",
        what_agent_needed="Approval of the JSS1 mathematics mark submission",
        user_name="Mr Okafor",
        conversation_summary="Teacher uploaded 32 scores",
        context={"workflow_id": "wf-77", "subject": "Mathematics"},
    )
    data.update(overrides)
    return EscalationRequest(**data)


@pytest.fixture
def silent_notifier():
    notifier = AsyncMock(spec=Notifier)
    return notifier


@pytest.fixture
def service(db_session, silent_notifier):
    return EscalationService(db_session, notifier=silent_notifier)


async def _events(db_session, escalation_id) -> list[str]:
    logs = await AuditLogRepository(db_session).list_for_escalation(escalation_id)
    return [log.event_type for log in logs]


@pytest.mark.asyncio
async def test_pause_creates_paused_escalation(service, tenant, db_session):
    escalation_id = await service.pause(_request(tenant.id))

    assert escalation_id.startswith("ESC-")
    escalation = await service.get_escalation(escalation_id, tenant_id=tenant.id)
    assert escalation.state == EscalationState.PAUSED.value
    assert escalation.round_number == 0
    assert escalation.priority == "MEDIUM"
    assert escalation.context["workflow_id"] == "wf-77"
    assert await _events(db_session, escalation_id) == ["ESCALATION_CREATED"]


@pytest.mark.asyncio
async def test_pause_normalizes_priority(service, tenant):
    escalation_id = await service.pause(_request(tenant.id, priority=" critical "))
    escalation = await service.get_escalation(escalation_id)
    assert escalation.priority == "CRITICAL"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"reason": "   "},
        {"what_agent_needed": ""},
        {"priority": "URGENT-ISH"},
    ],
)
async def test_pause_rejects_invalid_requests(service, tenant, overrides):
    with pytest.raises(InvalidEscalationRequest):
        await service.pause(_request(tenant.id, **overrides))
    assert await service.get_pending_escalations(tenant.id) == []


@pytest.mark.asyncio
async def test_pause_notifies_authority_in_background(service, tenant, silent_notifier):
    escalation_id = await service.pause(_request(tenant.id, authority_address="+15550000001"))
    await drain_background_deliveries()

    silent_notifier.send.assert_awaited_once()
    tenant_id, address, text = silent_notifier.send.await_args.args
    assert tenant_id == tenant.id
    assert address == "+15550000001"
    assert escalation_id in text
    assert "Approval of the JSS1 mathematics mark submission" in text


@pytest.mark.asyncio
async def test_pause_survives_notifier_failure(db_session, tenant):
    notifier = AsyncMock(spec=Notifier)
    notifier.send.side_effect = RuntimeError("SMS gateway down")
    service = EscalationService(db_session, notifier=notifier)

    escalation_id = await service.pause(_request(tenant.id, authority_address="+15550000001"))
    await drain_background_deliveries()

    assert (await service.get_escalation(escalation_id)).state == EscalationState.PAUSED.value


@pytest.mark.asyncio
async def test_pending_escalations_most_urgent_first(service, tenant):
    medium_id = await service.pause(_request(tenant.id, priority="MEDIUM"))
    critical_id = await service.pause(_request(tenant.id, priority="CRITICAL"))

    pending = await service.get_pending_escalations(tenant.id)

    assert [e.id for e in pending] == [critical_id, medium_id]


@pytest.mark.asyncio
async def test_fetch_for_authority_builds_brief(service, tenant, db_session):
    escalation_id = await service.pause(_request(tenant.id, priority="HIGH"))

    brief = await service.fetch_for_authority(
        escalation_id,
        tenant.id,
        conversation_history=["Teacher: marks uploaded", "Agent: waiting for approval"],
        authority_address="+15550000001",
    )

    assert brief.escalation.id == escalation_id
    assert brief.situation.startswith("Original agent (TA) needs authority for:\n")
    assert "Reason: Teacher submitted JSS1 mathematics marks" in brief.situation
    assert "User: Mr Okafor" in brief.situation
    assert "Priority: HIGH" in brief.situation
    assert "Context: Teacher uploaded 32 scores" in brief.situation
    assert brief.context.endswith(
        "\n\nConversation history:\nTeacher: marks uploaded\nAgent: waiting for approval"
    )
    assert "AUTHORITY_NOTIFIED" in await _events(db_session, escalation_id)


@pytest.mark.asyncio
async def test_fetch_for_authority_hides_other_tenants(service, tenant, other_tenant):
    escalation_id = await service.pause(_request(tenant.id))

    assert await service.fetch_for_authority(escalation_id, other_tenant.id) is None
    assert await service.fetch_for_authority("ESC-missing", tenant.id) is None


@pytest.mark.asyncio
async def test_clarification_then_decision(service, tenant, db_session):
    escalation_id = await service.pause(_request(tenant.id))

    clarification = await service.record_authority_response(
        AuthorityResponse(
            escalation_id=escalation_id,
            round_type=RoundType.CLARIFICATION_REQUEST,
            authority_request="Which term are these marks for?",
            responder_address="+15550000001",
        )
    )
    assert clarification.applied
    assert clarification.round_number == 1
    assert clarification.state == EscalationState.AWAITING_CLARIFICATION.value

    decision = await service.record_authority_response(
        AuthorityResponse(
            escalation_id=escalation_id,
            round_type="DECISION_MADE",
            authority_response="Approved, go ahead",
            decision="approve",
            instruction="Tell Mr Okafor the marks are approved",
            responder_address="+15550000001",
        )
    )
    assert decision.applied
    assert decision.round_number == 2
    assert decision.state == EscalationState.RESOLVED.value

    escalation = await service.get_escalation(escalation_id)
    assert escalation.decision == "APPROVE"
    assert escalation.instruction == "Tell Mr Okafor the marks are approved"
    assert escalation.resolved_by == "+15550000001"
    assert await service.get_authority_decision(escalation_id) == "Approved, go ahead"
    assert [r.round_type for r in await service.get_escalation_history(escalation_id)] == [
        "CLARIFICATION_REQUEST",
        "DECISION_MADE",
    ]
    assert await _events(db_session, escalation_id) == [
        "ESCALATION_CREATED",
        "AUTHORITY_RESPONSE_RECORDED",
        "DECISION_MADE",
    ]


@pytest.mark.asyncio
async def test_second_decision_is_ignored(service, tenant):
    escalation_id = await service.pause(_request(tenant.id))
    await service.record_authority_response(
        AuthorityResponse(escalation_id, RoundType.DECISION_MADE, "Approved", decision="APPROVE")
    )

    repeat = await service.record_authority_response(
        AuthorityResponse(escalation_id, RoundType.DECISION_MADE, "Actually no", decision="REJECT")
    )

    assert not repeat.applied
    assert repeat.reason == "terminal"
    assert repeat.round_number == 1
    escalation = await service.get_escalation(escalation_id)
    assert escalation.decision == "APPROVE"
    assert len(await service.get_escalation_history(escalation_id)) == 1


@pytest.mark.asyncio
async def test_round_on_missing_or_foreign_escalation(service, tenant, other_tenant):
    escalation_id = await service.pause(_request(tenant.id))

    missing = await service.record_authority_response(
        AuthorityResponse("ESC-missing", RoundType.NEEDS_DECISION, "Hmm")
    )
    foreign = await service.record_authority_response(
        AuthorityResponse(escalation_id, RoundType.NEEDS_DECISION, "Hmm", tenant_id=other_tenant.id)
    )

    assert missing.reason == "not_found"
    assert foreign.reason == "not_found"
    assert (await service.get_escalation(escalation_id)).round_number == 0


@pytest.mark.asyncio
async def test_unknown_round_type_rejected(service, tenant):
    escalation_id = await service.pause(_request(tenant.id))
    with pytest.raises(InvalidEscalationRequest):
        await service.record_authority_response(AuthorityResponse(escalation_id, "SHRUG"))


@pytest.mark.asyncio
async def test_decision_releases_focus(db_session, service, tenant):
    focus = FocusService(db_session)
    escalation_id = await service.pause(_request(tenant.id))
    await focus.lock("+15550000001", escalation_id)

    await service.record_authority_response(
        AuthorityResponse(escalation_id, RoundType.DECISION_MADE, "Yes", decision="APPROVE")
    )

    assert await focus.get_active("+15550000001") is None


@pytest.mark.asyncio
async def test_mark_failed_keeps_record(service, tenant, db_session):
    escalation_id = await service.pause(_request(tenant.id))

    assert await service.mark_failed(escalation_id, "Teacher withdrew the request")
    assert not await service.mark_failed(escalation_id, "Again")

    escalation = await service.get_escalation(escalation_id)
    assert escalation.state == EscalationState.FAILED.value
    assert escalation.failure_reason == "Teacher withdrew the request"
    assert await service.get_pending_escalations(tenant.id) == []
    assert await _events(db_session, escalation_id) == ["ESCALATION_CREATED", "ESCALATION_FAILED"]


@pytest.mark.asyncio
async def test_failed_escalation_ignores_rounds(service, tenant):
    escalation_id = await service.pause(_request(tenant.id))
    await service.mark_failed(escalation_id, "Abandoned")

    result = await service.record_authority_response(
        AuthorityResponse(escalation_id, RoundType.DECISION_MADE, "Approved", decision="APPROVE")
    )

    assert not result.applied
    assert result.state == EscalationState.FAILED.value


@pytest.mark.asyncio
async def test_resumption_requires_terminal_state_and_happens_once(service, tenant):
    escalation_id = await service.pause(_request(tenant.id))

    assert not await service.mark_for_resumption(escalation_id, "msg-2")

    await service.record_authority_response(
        AuthorityResponse(escalation_id, RoundType.DECISION_MADE, "Approved", decision="APPROVE")
    )
    assert await service.mark_for_resumption(escalation_id, "msg-2")
    assert not await service.mark_for_resumption(escalation_id, "msg-3")

    escalation = await service.get_escalation(escalation_id)
    assert escalation.resume_marker == "msg-2"
    assert escalation.resumed_at is not None


@pytest.mark.asyncio
async def test_expire_stale_fails_old_paused_escalations(service, tenant):
    old_id = await service.pause(_request(tenant.id))
    escalation = await service.get_escalation(old_id)
    escalation.created_at = datetime.utcnow() - timedelta(hours=3)
    await service.escalation_repo.save(escalation, "backdate escalation")
    fresh_id = await service.pause(_request(tenant.id))

    with patch("app.domain.services.escalation_service.settings.escalation_stale_after_minutes", 60):
        expired = await service.expire_stale(tenant_id=tenant.id)

    assert expired == [old_id]
    assert (await service.get_escalation(old_id)).failure_reason.startswith("Expired:")
    assert (await service.get_escalation(fresh_id)).state == EscalationState.PAUSED.value


@pytest.mark.asyncio
async def test_expire_stale_disabled_by_default(service, tenant):
    await service.pause(_request(tenant.id))
    with patch("app.domain.services.escalation_service.settings.escalation_stale_after_minutes", None):
        assert await service.expire_stale(tenant_id=tenant.id) == []
