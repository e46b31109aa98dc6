"""Role-based authorization for privileged actions.

Every privileged action, whether requested in conversation or reached by
resolving an escalation, passes through ``ActionAuthorizer.authorize``
before it runs.

Roles:
    admin: school administrator (SA agent)
    teacher: secondary school teacher (TA agent)
    primary_teacher: primary school teacher
    parent: parent of a registered student (PA agent)
    student: student (PA agent, own results only)
    group_admin: group moderator (GA agent)
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping


class UserRole(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    PRIMARY_TEACHER = "primary_teacher"
    PARENT = "parent"
    STUDENT = "student"
    GROUP_ADMIN = "group_admin"


class ActionKind(str, Enum):
    """Every action the agents can request."""

    # Parent agent
    NONE = "NONE"
    ESCALATE_PAYMENT = "ESCALATE_PAYMENT"
    FETCH_LOCKED_RESULT = "FETCH_LOCKED_RESULT"
    VERIFY_TEACHER_TOKEN = "VERIFY_TEACHER_TOKEN"
    VERIFY_PARENT_TOKEN = "VERIFY_PARENT_TOKEN"
    SELECT_CHILD = "SELECT_CHILD"
    LIST_CHILDREN = "LIST_CHILDREN"
    DELIVER_STUDENT_PDF = "DELIVER_STUDENT_PDF"

    # Teacher agent
    CONFIRM_MARK_SUBMISSION = "CONFIRM_MARK_SUBMISSION"
    CONFIRM_ATTENDANCE_SUBMISSION = "CONFIRM_ATTENDANCE_SUBMISSION"
    REQUEST_MARK_CORRECTION = "REQUEST_MARK_CORRECTION"
    UPDATE_STUDENT_SCORE = "UPDATE_STUDENT_SCORE"
    RECALCULATE_CLASS_RESULTS = "RECALCULATE_CLASS_RESULTS"
    GENERATE_DRAFT_BROADSHEET = "GENERATE_DRAFT_BROADSHEET"
    ANALYZE_CLASS_PERFORMANCE = "ANALYZE_CLASS_PERFORMANCE"
    ESCALATE_TO_ADMIN = "ESCALATE_TO_ADMIN"

    # School admin agent
    ENGAGE_PARENTS = "ENGAGE_PARENTS"
    ENGAGE_PARENT_ON_ABSENCE = "ENGAGE_PARENT_ON_ABSENCE"
    ACTIVATE_SCHOOL = "ACTIVATE_SCHOOL"
    LOCK_RESULTS = "LOCK_RESULTS"
    UNLOCK_RESULTS = "UNLOCK_RESULTS"
    RELEASE_RESULTS = "RELEASE_RESULTS"
    REVOKE_RELEASE = "REVOKE_RELEASE"
    VIEW_AUDIT_LOG = "VIEW_AUDIT_LOG"
    OVERRIDE_LOCK = "OVERRIDE_LOCK"
    FINALIZE_AND_SIGN_RESULTS = "FINALIZE_AND_SIGN_RESULTS"
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"
    REJECT_PAYMENT = "REJECT_PAYMENT"
    GET_TEACHER_TOKEN = "GET_TEACHER_TOKEN"
    REVOKE_TEACHER_TOKEN = "REVOKE_TEACHER_TOKEN"
    REGISTER_STUDENT = "REGISTER_STUDENT"
    MANAGE_STAFF = "MANAGE_STAFF"
    PROPOSE_AMENDMENT = "PROPOSE_AMENDMENT"
    CONFIRM_AMENDMENT = "CONFIRM_AMENDMENT"
    APPROVE_MARK_AMENDMENT = "APPROVE_MARK_AMENDMENT"
    CLOSE_ALL_ESCALATIONS = "CLOSE_ALL_ESCALATIONS"
    APPROVE_MARK_SUBMISSION = "APPROVE_MARK_SUBMISSION"
    CLOSE_ESCALATION = "CLOSE_ESCALATION"
    FINALIZE_SETUP = "FINALIZE_SETUP"

    # Group agent
    SEND_MESSAGE = "SEND_MESSAGE"
    DELETE_MESSAGE = "DELETE_MESSAGE"
    GREET_NEW_MEMBER = "GREET_NEW_MEMBER"
    LOG_MODERATION = "LOG_MODERATION"

    @classmethod
    def parse(cls, value: "str | ActionKind | None") -> "ActionKind | None":
        """Parse an action name; unknown names return None."""
        if value is None or isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class ActionSpec:
    action: ActionKind
    agent: str
    required_roles: frozenset[UserRole]
    description: str
    conversational: bool = True
    requires_intent_clear: bool = False
    requires_authority: bool = False

    def required_roles_text(self) -> str:
        """Required roles in declaration order, joined with 'or'."""
        ordered = [role.value for role in UserRole if role in self.required_roles]
        return " or ".join(ordered)


@dataclass(frozen=True)
class AuthorizationResult:
    authorized: bool
    reason: str | None = None


def _spec(
    action: ActionKind,
    agent: str,
    roles: UserRole | Iterable[UserRole],
    description: str,
    conversational: bool = True,
    escalation_guarded: bool = False,
) -> ActionSpec:
    if isinstance(roles, UserRole):
        roles = (roles,)
    return ActionSpec(
        action=action,
        agent=agent,
        required_roles=frozenset(roles),
        description=description,
        conversational=conversational,
        requires_intent_clear=escalation_guarded,
        requires_authority=escalation_guarded,
    )


def build_action_registry() -> Mapping[ActionKind, ActionSpec]:
    """Build the immutable action registry.

    Escalation-guarded actions require both clear intent and an explicit
    authority acknowledgement, so an ambiguous reply cannot trigger them.
    """
    A = ActionKind
    R = UserRole
    parent_or_student = (R.PARENT, R.STUDENT)
    group_members = (R.GROUP_ADMIN, R.PARENT, R.TEACHER)

    specs = [
        # Parent agent
        _spec(A.NONE, "PA", parent_or_student, "No action required", conversational=False),
        _spec(A.ESCALATE_PAYMENT, "PA", R.PARENT, "Escalate payment to admin for verification"),
        _spec(A.FETCH_LOCKED_RESULT, "PA", parent_or_student, "Retrieve locked academic results"),
        _spec(A.VERIFY_TEACHER_TOKEN, "PA", parent_or_student, "Verify teacher access token", conversational=False),
        _spec(A.VERIFY_PARENT_TOKEN, "PA", parent_or_student, "Verify parent access token", conversational=False),
        _spec(A.SELECT_CHILD, "PA", R.PARENT, "Select which child to view results for", conversational=False),
        _spec(A.LIST_CHILDREN, "PA", R.PARENT, "List all registered children"),
        _spec(A.DELIVER_STUDENT_PDF, "PA", parent_or_student, "Generate and deliver student report as PDF"),
        # Teacher agent
        _spec(A.CONFIRM_MARK_SUBMISSION, "TA", R.TEACHER, "Confirm mark submission for class"),
        _spec(A.CONFIRM_ATTENDANCE_SUBMISSION, "TA", R.TEACHER, "Confirm attendance submission"),
        _spec(A.REQUEST_MARK_CORRECTION, "TA", R.TEACHER, "Request mark correction from admin"),
        _spec(A.UPDATE_STUDENT_SCORE, "TA", R.TEACHER, "Update individual student score"),
        _spec(A.RECALCULATE_CLASS_RESULTS, "TA", R.TEACHER, "Recalculate class aggregate results"),
        _spec(A.GENERATE_DRAFT_BROADSHEET, "TA", R.TEACHER, "Generate draft mark sheet for review"),
        _spec(A.ANALYZE_CLASS_PERFORMANCE, "TA", R.TEACHER, "Analyze class performance metrics"),
        _spec(A.ESCALATE_TO_ADMIN, "TA", R.TEACHER, "Request admin authority"),
        # School admin agent
        _spec(A.ENGAGE_PARENTS, "SA", R.ADMIN, "Engage parents proactively about student absence", escalation_guarded=True),
        _spec(A.ENGAGE_PARENT_ON_ABSENCE, "SA", R.ADMIN, "Contact parent about student absence", escalation_guarded=True),
        _spec(A.ACTIVATE_SCHOOL, "SA", R.ADMIN, "Activate school after setup completion", escalation_guarded=True),
        _spec(A.LOCK_RESULTS, "SA", R.ADMIN, "Lock academic results from parent view", escalation_guarded=True),
        _spec(A.UNLOCK_RESULTS, "SA", R.ADMIN, "Unlock previously locked results", escalation_guarded=True),
        _spec(A.RELEASE_RESULTS, "SA", R.ADMIN, "Release results to parents", escalation_guarded=True),
        _spec(A.REVOKE_RELEASE, "SA", R.ADMIN, "Revoke released results", escalation_guarded=True),
        _spec(A.VIEW_AUDIT_LOG, "SA", R.ADMIN, "View audit trail of actions"),
        _spec(A.OVERRIDE_LOCK, "SA", R.ADMIN, "Override result lock for emergency access", escalation_guarded=True),
        _spec(A.FINALIZE_AND_SIGN_RESULTS, "SA", R.ADMIN, "Finalize and digitally sign results", escalation_guarded=True),
        _spec(A.CONFIRM_PAYMENT, "SA", R.ADMIN, "Confirm payment receipt", escalation_guarded=True),
        _spec(A.REJECT_PAYMENT, "SA", R.ADMIN, "Reject or request resubmission of payment", escalation_guarded=True),
        _spec(A.GET_TEACHER_TOKEN, "SA", R.ADMIN, "Generate access token for teacher"),
        _spec(A.REVOKE_TEACHER_TOKEN, "SA", R.ADMIN, "Revoke teacher access token"),
        _spec(A.REGISTER_STUDENT, "SA", R.ADMIN, "Register new student in system"),
        _spec(A.MANAGE_STAFF, "SA", R.ADMIN, "Add or remove teachers and staff"),
        _spec(A.PROPOSE_AMENDMENT, "SA", R.ADMIN, "Propose amendment to student records"),
        _spec(A.CONFIRM_AMENDMENT, "SA", R.ADMIN, "Confirm and apply amendment", escalation_guarded=True),
        _spec(A.APPROVE_MARK_AMENDMENT, "SA", R.ADMIN, "Approve a teacher's mark amendment", escalation_guarded=True),
        _spec(A.CLOSE_ALL_ESCALATIONS, "SA", R.ADMIN, "Close all pending escalations", escalation_guarded=True),
        _spec(A.APPROVE_MARK_SUBMISSION, "SA", R.ADMIN, "Approve teacher mark submission", escalation_guarded=True),
        _spec(A.CLOSE_ESCALATION, "SA", R.ADMIN, "Close a specific pending escalation", escalation_guarded=True),
        _spec(A.FINALIZE_SETUP, "SA", R.ADMIN, "Finalize school setup and confirm completion"),
        # Group agent
        _spec(A.SEND_MESSAGE, "GA", group_members, "Send message to group"),
        _spec(A.DELETE_MESSAGE, "GA", R.GROUP_ADMIN, "Delete inappropriate message", conversational=False),
        _spec(A.GREET_NEW_MEMBER, "GA", group_members, "Greet new group member"),
        _spec(A.LOG_MODERATION, "GA", R.GROUP_ADMIN, "Log moderation action", conversational=False),
    ]
    return MappingProxyType({spec.action: spec for spec in specs})


class ActionAuthorizer:
    """Evaluates authorization requests against an injected registry.

    Denials are returned as values, never raised. The result depends only
    on the registry and the arguments.
    """

    def __init__(self, registry: Mapping[ActionKind, ActionSpec] | None = None):
        self.registry = registry if registry is not None else build_action_registry()

    def get_action_spec(self, action: "ActionKind | str | None") -> ActionSpec | None:
        kind = ActionKind.parse(action)
        if kind is None:
            return None
        return self.registry.get(kind)

    def can_role_perform(self, action: "ActionKind | str", role: "UserRole | str | None") -> bool:
        spec = self.get_action_spec(action)
        if spec is None or not role:
            return False
        try:
            return UserRole(role) in spec.required_roles
        except ValueError:
            return False

    def authorize(
        self,
        action: "ActionKind | str | None",
        role: "UserRole | str | None",
        intent_clear: bool = False,
        authority_acknowledged: bool = False,
    ) -> AuthorizationResult:
        """Authorize an action for a role.

        Args:
            action: Action to authorize
            role: Caller's role
            intent_clear: Escalation only; the intent was confirmed
            authority_acknowledged: Escalation only; the authority explicitly acknowledged

        Returns:
            AuthorizationResult with a human-readable reason on denial
        """
        action_name = action.value if isinstance(action, ActionKind) else action
        spec = self.get_action_spec(action)
        if spec is None:
            return AuthorizationResult(False, f"Unknown action: {action_name}")

        if not role:
            return AuthorizationResult(False, "User role not identified")

        role_name = role.value if isinstance(role, UserRole) else role
        if not self.can_role_perform(spec.action, role):
            return AuthorizationResult(
                False,
                f"Role '{role_name}' cannot perform '{spec.action.value}' "
                f"(requires '{spec.required_roles_text()}')",
            )

        if spec.requires_intent_clear and not intent_clear:
            return AuthorizationResult(
                False, f"Action '{spec.action.value}' requires clear intent from escalation"
            )

        if spec.requires_authority and not authority_acknowledged:
            return AuthorizationResult(
                False, f"Action '{spec.action.value}' requires authority acknowledgement"
            )

        return AuthorizationResult(True)
