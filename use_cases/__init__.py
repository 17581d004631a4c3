"""Application layer contracts for orchestrating high-level flows."""

from .auth_flow import AuthFlowResult, AuthFlowStatus, ensure_route_access
from .bootstrap import StartupResult, StartupStatus, run_startup
from .route_guard import DEFAULT_ROUTES, RouteDecision, RouteGuard, RouteTable, decide
from .session_models import Role, SessionSnapshot, UserProfile, is_admin, is_patient

__all__ = [
    "AuthFlowResult",
    "AuthFlowStatus",
    "DEFAULT_ROUTES",
    "Role",
    "RouteDecision",
    "RouteGuard",
    "RouteTable",
    "SessionSnapshot",
    "StartupResult",
    "StartupStatus",
    "UserProfile",
    "decide",
    "ensure_route_access",
    "is_admin",
    "is_patient",
    "run_startup",
]
