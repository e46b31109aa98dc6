"""Domain services."""

from app.domain.services.escalation_service import EscalationService
from app.domain.services.focus_service import FocusService
from app.domain.services.resolution_dispatcher import ResolutionDispatcher

__all__ = ["EscalationService", "FocusService", "ResolutionDispatcher"]
