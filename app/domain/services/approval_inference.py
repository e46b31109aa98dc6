"""Fallback inference of an action from an authority's affirmative reply.

When the upstream parser fails to emit an explicit action for a resolved
escalation, a plain affirmative reply is mapped to the action bound to the
escalation type. This trades precision for recall: a missed explicit action
must not strand the authority's approval. The inferred action is never
trusted directly; the dispatcher still runs it through ActionAuthorizer.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

from app.core.action_authorization import ActionKind
from app.domain.schemas.resolution import AffirmationStyle, ResolutionBinding

logger = logging.getLogger(__name__)

# Deliberately broad; tightening it needs product sign-off
APPROVAL_PATTERN = re.compile(r"approv|finaliz|confirm|ok|yes|correct|process|release", re.IGNORECASE)

PARENT_ENGAGEMENT_PHRASES = ("yes", "engage", "contact parents", "do it", "go ahead", "please do")

APPROVE_DECISIONS = frozenset({"APPROVE", "APPROVED"})
NEGATIVE_DECISIONS = frozenset({"REJECT", "REJECTED", "DENY", "DENIED", "DECLINE", "DECLINED"})


@dataclass(frozen=True)
class InferenceResult:
    action: ActionKind | None
    inferred: bool
    intent_clear: bool
    authority_acknowledged: bool


def is_plain_approval(text: str | None) -> bool:
    return bool(text) and APPROVAL_PATTERN.search(text) is not None


def wants_parent_engagement(text: str | None) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(phrase in lowered for phrase in PARENT_ENGAGEMENT_PHRASES)


def _normalize_decision(decision: str | None) -> str | None:
    return decision.strip().upper() if decision else None


def infer_action(
    binding: ResolutionBinding | None,
    explicit_action: ActionKind | None,
    text: str | None,
    decision: str | None,
    context: dict[str, Any] | None,
    intent_clear: bool = False,
    authority_acknowledged: bool = False,
) -> InferenceResult:
    """Infer the bound action from an affirmative reply, if appropriate.

    Args:
        binding: Resolution binding of the escalation type (None: no inference)
        explicit_action: Action emitted upstream, if any
        text: The authority's reply text
        decision: Recorded or supplied decision (APPROVE, REJECT, ...)
        context: The escalation's context blob
        intent_clear: Upstream intent flag, kept when nothing is inferred
        authority_acknowledged: Upstream acknowledgement flag, kept when nothing is inferred

    Returns:
        InferenceResult; inferred actions carry both flags set
    """
    unchanged = InferenceResult(explicit_action, False, intent_clear, authority_acknowledged)
    if binding is None:
        return unchanged

    normalized = _normalize_decision(decision)
    if normalized in NEGATIVE_DECISIONS:
        return unchanged

    current = explicit_action or ActionKind.NONE
    if current not in binding.replaceable_actions:
        return unchanged

    if binding.affirmation is AffirmationStyle.PARENT_ENGAGEMENT:
        affirmative = wants_parent_engagement(text) and bool((context or {}).get("absentees"))
    else:
        affirmative = is_plain_approval(text) or normalized in APPROVE_DECISIONS

    if not affirmative:
        return unchanged

    logger.info(
        f"Inferred {binding.action.value} for {binding.escalation_type} "
        f"(explicit action: {current.value})"
    )
    return InferenceResult(binding.action, True, True, True)
