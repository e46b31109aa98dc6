"""Tests for notification delivery and escalation audit logging."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from twilio.base.exceptions import TwilioException

from app.domain.services.audit_service import EscalationAuditService
from app.infrastructure.notifications import (
    LoggingNotifier,
    Notifier,
    TwilioSmsNotifier,
    drain_background_deliveries,
    get_notifier,
    send_in_background,
)
from app.infrastructure.twilio_client import TwilioSendError, TwilioSmsClient
from app.persistence.models.audit_log import EscalationAuditEvent
from app.persistence.repositories.audit_log_repository import AuditLogRepository


@pytest.mark.asyncio
async def test_twilio_notifier_sends_sms():
    client = MagicMock()
    client.send_sms.return_value = {"sid": "SM123", "status": "queued"}
    notifier = TwilioSmsNotifier(client=client)

    await notifier.send(1, "+15550000001", "Escalation ESC-1 needs you")

    client.send_sms.assert_called_once_with("+15550000001", "Escalation ESC-1 needs you")


def test_twilio_client_requires_credentials():
    with patch("app.infrastructure.twilio_client.settings") as mock_settings:
        mock_settings.twilio_account_sid = None
        mock_settings.twilio_auth_token = None
        mock_settings.twilio_from_number = None
        with pytest.raises(ValueError):
            TwilioSmsClient()


def test_twilio_client_wraps_send_errors():
    client = TwilioSmsClient(account_sid="AC" + "0" * 32, auth_token="token", from_number="+15550009999")
    client.client = MagicMock()
    client.client.messages.create.side_effect = TwilioException("Invalid 'To' number")

    with pytest.raises(TwilioSendError):
        client.send_sms("+1", "hello")


def test_get_notifier_falls_back_to_logging():
    with patch("app.infrastructure.notifications.settings") as mock_settings:
        mock_settings.twilio_account_sid = None
        mock_settings.twilio_auth_token = None
        mock_settings.twilio_from_number = None
        assert isinstance(get_notifier(), LoggingNotifier)


@pytest.mark.asyncio
async def test_background_delivery_failure_is_contained():
    notifier = AsyncMock(spec=Notifier)
    notifier.send.side_effect = RuntimeError("gateway down")

    task = send_in_background(notifier, 1, "+15550000001", "hello")
    await drain_background_deliveries()

    assert task.done()
    notifier.send.assert_awaited_once_with(1, "+15550000001", "hello")


@pytest.mark.asyncio
async def test_audit_failure_does_not_raise(db_session):
    audit = EscalationAuditService(db_session)
    audit.repo = MagicMock()
    audit.repo.create = AsyncMock(side_effect=RuntimeError("audit table locked"))

    await audit.log(EscalationAuditEvent.AUTHORITY_NOTIFIED, "ESC-1", 1, actor_address="+15550000001")


@pytest.mark.asyncio
async def test_audit_events_listed_per_tenant(db_session, tenant, other_tenant):
    audit = EscalationAuditService(db_session)
    await audit.log_notified("ESC-1", tenant.id, "+15550000001")
    await audit.log(EscalationAuditEvent.ESCALATION_FAILED, "ESC-1", tenant.id, decision_summary="Expired")
    await audit.log_notified("ESC-2", other_tenant.id, "+15550000002")

    repo = AuditLogRepository(db_session)
    events = await repo.list_by_tenant(tenant.id)
    failed_only = await repo.list_by_tenant(tenant.id, event_type="ESCALATION_FAILED")

    assert {e.escalation_id for e in events} == {"ESC-1"}
    assert len(events) == 2
    assert [e.decision_summary for e in failed_only] == ["Expired"]
