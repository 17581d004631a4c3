"""Authentication flow orchestration (application layer)."""

from dataclasses import dataclass
from typing import Literal, Optional

from utils import session_manager

AuthFlowStatus = Literal["CONTINUE", "REDIRECT", "WAIT"]


@dataclass(frozen=True)
class AuthFlowResult:
    """Result contract for the per-navigation auth gate."""

    status: AuthFlowStatus
    reason: str
    path: str
    target: Optional[str] = None
    notice: Optional[str] = None
    notice_level: str = "info"
    user_id: Optional[str] = None


def ensure_route_access(path: str) -> AuthFlowResult:
    """Run the route guard for one navigation and return a control-flow status."""
    session_manager.init_session_state()
    guard = session_manager.get_route_guard()
    decision = session_manager.run(guard.evaluate(path))

    user = guard.store.user
    user_id = user.id if user is not None else None

    if decision.action == "REDIRECT":
        return AuthFlowResult(
            status="REDIRECT",
            reason="auth_required" if user is None else "already_authenticated",
            path=decision.path,
            target=decision.target,
            notice=decision.notice,
            notice_level=decision.notice_level,
            user_id=user_id,
        )
    if decision.action in ("WAIT", "STALE"):
        return AuthFlowResult(status="WAIT", reason="auth_pending", path=decision.path, user_id=user_id)
    return AuthFlowResult(
        status="CONTINUE",
        reason="authenticated" if user is not None else "public",
        path=decision.path,
        user_id=user_id,
    )
