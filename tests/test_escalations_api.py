"""Tests for the escalation HTTP API."""

from unittest.mock import AsyncMock

import pytest

from app.api.deps import get_escalation_service
from app.core.action_authorization import ActionKind
from app.core.auth import create_access_token
from app.core.exceptions import PersistenceError
from app.domain.services.resolution_dispatcher import ExecutionResult
from app.persistence.models.tenant import User

BASE = "/api/v1/escalations"


def _pause_body(**overrides):
    body = {
        "origin_agent": "TA",
        "escalation_type": "MARK_SUBMISSION_APPROVAL",
        "from_address": "+15551230000",
        "session_id": "session-1",
        "pause_message_id": "msg-1",
        "reason": "Teacher submitted JSS1 mathematics marks",
        "what_agent_needed": "Approval of the JSS1 mathematics mark submission",
        "context": {"workflow_id": "wf-77", "subject": "Mathematics", "class_level": "JSS1"},
    }
    body.update(overrides)
    return body


async def _pause(client, headers, **overrides) -> str:
    response = await client.post(BASE, json=_pause_body(**overrides), headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.mark.asyncio
async def test_requires_authentication(client):
    response = await client.get(BASE)
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_pause_and_list(client, admin_headers):
    medium_id = await _pause(client, admin_headers)
    critical_id = await _pause(client, admin_headers, priority="critical")

    response = await client.get(BASE, headers=admin_headers)

    assert response.status_code == 200
    assert [e["id"] for e in response.json()] == [critical_id, medium_id]
    assert response.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_pause_rejects_unknown_priority(client, admin_headers):
    response = await client.post(BASE, json=_pause_body(priority="WHENEVER"), headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_other_school_cannot_see_escalation(client, db_session, admin_headers, other_tenant):
    escalation_id = await _pause(client, admin_headers)
    outsider = User(tenant_id=other_tenant.id, email="head@riverside.test", role="admin")
    db_session.add(outsider)
    await db_session.commit()
    await db_session.refresh(outsider)
    outsider_headers = {"Authorization": f"Bearer {create_access_token({'sub': str(outsider.id)})}"}

    assert (await client.get(f"{BASE}/{escalation_id}", headers=outsider_headers)).status_code == 404
    brief = await client.post(f"{BASE}/{escalation_id}/brief", json={}, headers=outsider_headers)
    assert brief.status_code == 404
    assert (await client.get(BASE, headers=outsider_headers)).json() == []


@pytest.mark.asyncio
async def test_brief_requires_authority(client, admin_headers, teacher_headers):
    escalation_id = await _pause(client, admin_headers)

    response = await client.post(f"{BASE}/{escalation_id}/brief", json={}, headers=teacher_headers)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_brief_includes_history(client, admin_headers):
    escalation_id = await _pause(client, admin_headers)

    response = await client.post(
        f"{BASE}/{escalation_id}/brief",
        json={"conversation_history": ["Teacher: done uploading"]},
        headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["escalation"]["id"] == escalation_id
    assert data["situation"].startswith("Original agent (TA) needs authority for:")
    assert data["context"].endswith("Conversation history:\nTeacher: done uploading")
    assert data["rounds"] == []


@pytest.mark.asyncio
async def test_focus_lock_and_release(client, admin_headers):
    first_id = await _pause(client, admin_headers)
    second_id = await _pause(client, admin_headers, priority="HIGH")

    locked = await client.put(f"{BASE}/focus/{first_id}", headers=admin_headers)
    assert locked.status_code == 200
    assert locked.json()["escalation"]["id"] == first_id

    await client.put(f"{BASE}/focus/{second_id}", headers=admin_headers)
    focus = await client.get(f"{BASE}/focus", headers=admin_headers)
    assert focus.json()["escalation"]["id"] == second_id
    assert focus.json()["authority_address"] == "+15550000001"

    assert (await client.delete(f"{BASE}/focus", headers=admin_headers)).status_code == 204
    assert (await client.delete(f"{BASE}/focus", headers=admin_headers)).status_code == 204
    assert (await client.get(f"{BASE}/focus", headers=admin_headers)).json()["escalation"] is None

    assert (await client.put(f"{BASE}/focus/ESC-missing", headers=admin_headers)).status_code == 404


@pytest.mark.asyncio
async def test_next_pending(client, admin_headers):
    low_id = await _pause(client, admin_headers, priority="LOW")
    critical_id = await _pause(client, admin_headers, priority="CRITICAL")

    first = await client.get(f"{BASE}/next", headers=admin_headers)
    skipped = await client.get(f"{BASE}/next", params={"exclude_id": critical_id}, headers=admin_headers)

    assert first.json()["id"] == critical_id
    assert skipped.json()["id"] == low_id


@pytest.mark.asyncio
async def test_rounds_resolution_and_dispatch(client, admin_headers, notifier):
    from app.main import app

    executor = AsyncMock(return_value=ExecutionResult(success=True, summary="Marks approved"))
    app.state.action_executors = {ActionKind.APPROVE_MARK_SUBMISSION: executor}
    escalation_id = await _pause(client, admin_headers)

    clarify = await client.post(
        f"{BASE}/{escalation_id}/rounds",
        json={"round_type": "CLARIFICATION_REQUEST", "authority_request": "Which term?"},
        headers=admin_headers,
    )
    assert clarify.json() == {
        "applied": True, "round_number": 1, "state": "AWAITING_CLARIFICATION", "reason": None,
    }

    decide = await client.post(
        f"{BASE}/{escalation_id}/rounds",
        json={"round_type": "DECISION_MADE", "authority_response": "Yes approve", "decision": "approve"},
        headers=admin_headers,
    )
    assert decide.json()["round_number"] == 2
    assert decide.json()["state"] == "RESOLVED"

    repeat = await client.post(
        f"{BASE}/{escalation_id}/rounds",
        json={"round_type": "DECISION_MADE", "decision": "REJECT"},
        headers=admin_headers,
    )
    assert repeat.json()["applied"] is False

    history = await client.get(f"{BASE}/{escalation_id}/rounds", headers=admin_headers)
    assert [r["round_type"] for r in history.json()] == ["CLARIFICATION_REQUEST", "DECISION_MADE"]

    dispatched = await client.post(
        f"{BASE}/{escalation_id}/dispatch",
        json={"text": "Yes approve", "payload": {"workflow_id": "wf-other"}},
        headers=admin_headers,
    )
    data = dispatched.json()
    assert data["status"] == "EXECUTED"
    assert data["action"] == "APPROVE_MARK_SUBMISSION"
    assert data["inferred"] is True
    assert data["payload"]["workflow_id"] == "wf-77"
    assert data["corrections"] == [
        {"field": "workflow_id", "supplied": "wf-other", "corrected": "wf-77"}
    ]
    executor.assert_awaited_once()
    assert "+15551230000" in notifier.addresses()

    resumed = await client.post(
        f"{BASE}/{escalation_id}/resume", json={"resume_marker": "msg-2"}, headers=admin_headers
    )
    assert resumed.json() == {"applied": True}


@pytest.mark.asyncio
async def test_unknown_round_type_is_rejected(client, admin_headers):
    escalation_id = await _pause(client, admin_headers)
    response = await client.post(
        f"{BASE}/{escalation_id}/rounds", json={"round_type": "MAYBE"}, headers=admin_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_dispatch_on_missing_escalation(client, admin_headers):
    response = await client.post(f"{BASE}/ESC-missing/dispatch", json={"text": "yes"}, headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_fail_escalation(client, admin_headers):
    escalation_id = await _pause(client, admin_headers)

    failed = await client.post(
        f"{BASE}/{escalation_id}/fail", json={"reason": "Teacher withdrew"}, headers=admin_headers
    )
    again = await client.post(
        f"{BASE}/{escalation_id}/fail", json={"reason": "Again"}, headers=admin_headers
    )

    assert failed.json() == {"applied": True}
    assert again.json() == {"applied": False}
    escalation = (await client.get(f"{BASE}/{escalation_id}", headers=admin_headers)).json()
    assert escalation["state"] == "FAILED"
    assert escalation["failure_reason"] == "Teacher withdrew"


@pytest.mark.asyncio
async def test_store_failure_returns_503(client, admin_headers):
    from app.main import app

    broken = AsyncMock()
    broken.get_pending_escalations.side_effect = PersistenceError("list escalations", "connection reset")
    app.dependency_overrides[get_escalation_service] = lambda: broken

    response = await client.get(BASE, headers=admin_headers)

    assert response.status_code == 503
    assert response.json() == {"detail": "I had trouble processing that, please try again"}


@pytest.mark.asyncio
async def test_expiry_worker_disabled_without_setting(client):
    response = await client.post("/workers/expire-stale-escalations")
    assert response.json() == {"enabled": False, "expired": 0, "errors": 0}
