"""Centralized role-based navigation rules."""

from typing import List, Optional, Tuple

from use_cases.session_models import Role, UserProfile

PATIENT_ACTIONS = frozenset({"VIEW_DASHBOARD", "VIEW_OWN_REPORTS"})

# (action, label, path) in display order
NAV_ITEMS: Tuple[Tuple[str, str, str], ...] = (
    ("VIEW_DASHBOARD", "Dashboard", "/dashboard"),
    ("VIEW_OWN_REPORTS", "My Reports", "/report-viewer"),
    ("MANAGE_PATIENTS", "Sign Up Patients", "/manage-patients"),
    ("VIEW_ALL_REPORTS", "All Reports", "/all-reports"),
    ("MANAGE_USERS", "Manage Users", "/manage-users"),
)


def is_allowed(user: Optional[UserProfile], action: str) -> bool:
    if user is None:
        return False
    # Admins get overarching rights to everything
    if user.profile_type is Role.ADMIN:
        return True
    return action in PATIENT_ACTIONS


def enforce(user: Optional[UserProfile], action: str) -> bool:
    """
    Evaluates if the user is authorized to perform the action.
    Denials are written to the audit trail.
    """
    import auth
    from infrastructure.repositories.sqlite_audit_repository import AuditAction

    authorized = is_allowed(user, action)
    if not authorized:
        auth.get_audit_repo().log_action(
            AuditAction.RBAC_DENIED,
            target_type="rbac",
            actor_profile_id=user.id if user else None,
            actor_role=user.profile_type.value if user else None,
            metadata={"target_action": action, "reason": "insufficient_rights"},
            result="deny",
        )
    return authorized


def action_for_path(path: str) -> Optional[str]:
    for action, _label, item_path in NAV_ITEMS:
        if item_path == path:
            return action
    return None


def visible_nav_items(user: Optional[UserProfile]) -> List[Tuple[str, str]]:
    """(label, path) pairs the navigation bar should show; hidden items are not audited."""
    return [(label, path) for action, label, path in NAV_ITEMS if is_allowed(user, action)]
