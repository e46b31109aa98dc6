"""Tests for the escalation repository."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import PersistenceError
from app.persistence.models.escalation import EscalationRound, EscalationState, RoundType
from app.persistence.repositories.escalation_repository import EscalationRepository

BASE_TIME = datetime(2026, 3, 2, 8, 0, 0)


async def _make(repo, tenant_id, escalation_id, priority="MEDIUM", minutes=0, state="PAUSED"):
    return await repo.create(
        tenant_id,
        id=escalation_id,
        origin_agent="TA",
        escalation_type="MARK_SUBMISSION_APPROVAL",
        priority=priority,
        from_address="+15551230000",
        session_id=f"session-{escalation_id}",
        pause_message_id=f"msg-{escalation_id}",
        reason="Marks need approval",
        what_agent_needed="Approve JSS1 maths marks",
        context={"workflow_id": "wf-1"},
        state=state,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest.mark.asyncio
async def test_pending_list_orders_by_priority_then_age(db_session, tenant):
    repo = EscalationRepository(db_session)
    await _make(repo, tenant.id, "ESC-low", priority="LOW", minutes=0)
    await _make(repo, tenant.id, "ESC-medium-new", priority="MEDIUM", minutes=10)
    await _make(repo, tenant.id, "ESC-medium-old", priority="MEDIUM", minutes=1)
    await _make(repo, tenant.id, "ESC-critical", priority="CRITICAL", minutes=20)
    await _make(repo, tenant.id, "ESC-high", priority="HIGH", minutes=30)
    await _make(repo, tenant.id, "ESC-done", priority="CRITICAL", state="RESOLVED")

    pending = await repo.list_by_states(tenant.id)

    assert [e.id for e in pending] == [
        "ESC-critical",
        "ESC-high",
        "ESC-medium-old",
        "ESC-medium-new",
        "ESC-low",
    ]


@pytest.mark.asyncio
async def test_pending_list_is_tenant_scoped(db_session, tenant, other_tenant):
    repo = EscalationRepository(db_session)
    await _make(repo, tenant.id, "ESC-mine")
    await _make(repo, other_tenant.id, "ESC-theirs")

    assert [e.id for e in await repo.list_by_states(tenant.id)] == ["ESC-mine"]
    assert await repo.get("ESC-theirs", tenant_id=tenant.id) is None
    assert (await repo.get("ESC-theirs")).tenant_id == other_tenant.id


@pytest.mark.asyncio
async def test_pending_includes_awaiting_clarification(db_session, tenant):
    repo = EscalationRepository(db_session)
    await _make(repo, tenant.id, "ESC-paused", minutes=1)
    await _make(repo, tenant.id, "ESC-clarify", minutes=0, state=EscalationState.AWAITING_CLARIFICATION.value)
    await _make(repo, tenant.id, "ESC-in-authority", state=EscalationState.IN_AUTHORITY.value)

    assert [e.id for e in await repo.list_by_states(tenant.id)] == ["ESC-clarify", "ESC-paused"]


@pytest.mark.asyncio
async def test_next_pending_skips_excluded(db_session, tenant):
    repo = EscalationRepository(db_session)
    await _make(repo, tenant.id, "ESC-critical", priority="CRITICAL")
    await _make(repo, tenant.id, "ESC-medium", priority="MEDIUM")

    assert (await repo.next_pending(tenant.id)).id == "ESC-critical"
    assert (await repo.next_pending(tenant.id, exclude_id="ESC-critical")).id == "ESC-medium"


@pytest.mark.asyncio
async def test_next_pending_none_when_queue_empty(db_session, tenant):
    repo = EscalationRepository(db_session)
    assert await repo.next_pending(tenant.id) is None


@pytest.mark.asyncio
async def test_append_round_numbers_increase(db_session, tenant):
    repo = EscalationRepository(db_session)
    escalation = await _make(repo, tenant.id, "ESC-rounds")

    first = await repo.append_round(
        escalation, RoundType.CLARIFICATION_REQUEST, "Which class?", None
    )
    assert first.round_number == 1
    assert escalation.state == EscalationState.AWAITING_CLARIFICATION.value

    second = await repo.append_round(
        escalation,
        RoundType.DECISION_MADE,
        None,
        "Approved",
        decision="APPROVE",
        instruction="Tell the teacher it is approved",
        responder_address="+15550000001",
    )
    assert second.round_number == 2
    assert escalation.round_number == 2
    assert escalation.state == EscalationState.RESOLVED.value
    assert escalation.decision == "APPROVE"
    assert escalation.resolved_by == "+15550000001"
    assert escalation.resolved_at is not None

    rounds = await repo.list_rounds(escalation.id)
    assert [r.round_number for r in rounds] == [1, 2]
    assert (await repo.get_decision_round(escalation.id)).round_number == 2


@pytest.mark.asyncio
async def test_non_decision_round_drops_decision_fields(db_session, tenant):
    repo = EscalationRepository(db_session)
    escalation = await _make(repo, tenant.id, "ESC-needs")

    round_ = await repo.append_round(
        escalation, RoundType.NEEDS_DECISION, None, "Looking into it", decision="APPROVE"
    )

    assert round_.decision is None
    assert escalation.state == EscalationState.IN_AUTHORITY.value
    assert escalation.decision is None


@pytest.mark.asyncio
async def test_round_number_is_unique_per_escalation(db_session, tenant):
    repo = EscalationRepository(db_session)
    await _make(repo, tenant.id, "ESC-unique")
    db_session.add(EscalationRound(escalation_id="ESC-unique", round_number=1, round_type="NEEDS_DECISION"))
    await db_session.commit()

    db_session.add(EscalationRound(escalation_id="ESC-unique", round_number=1, round_type="NEEDS_DECISION"))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_duplicate_escalation_id_raises_persistence_error(db_session, tenant):
    repo = EscalationRepository(db_session)
    await _make(repo, tenant.id, "ESC-dup")

    with pytest.raises(PersistenceError):
        await _make(repo, tenant.id, "ESC-dup")


@pytest.mark.asyncio
async def test_list_stale_only_returns_old_paused(db_session, tenant):
    repo = EscalationRepository(db_session)
    await _make(repo, tenant.id, "ESC-old", minutes=0)
    await _make(repo, tenant.id, "ESC-old-clarify", minutes=0, state=EscalationState.AWAITING_CLARIFICATION.value)
    await _make(repo, tenant.id, "ESC-new", minutes=120)

    stale = await repo.list_stale(BASE_TIME + timedelta(minutes=60), tenant_id=tenant.id)

    assert [e.id for e in stale] == ["ESC-old"]
