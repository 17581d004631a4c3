"""Navigation gate: (path, session state) -> render / wait / redirect."""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Literal, Optional

from use_cases.session_models import SessionSnapshot, is_admin

log = logging.getLogger(__name__)

RouteAction = Literal["WAIT", "RENDER", "REDIRECT", "STALE"]
NoticeLevel = Literal["info", "success", "warning", "error"]

SESSION_EXPIRED_NOTICE = "Your session has expired. Please log in again."
LOGIN_REQUIRED_NOTICE = "Please log in to continue."
WELCOME_ADMIN_NOTICE = "Welcome back, admin!"
WELCOME_NOTICE = "Welcome back!"


@dataclass(frozen=True)
class RouteTable:
    protected: FrozenSet[str]
    public: FrozenSet[str]
    login_pages: FrozenSet[str]
    login_path: str = "/login"
    landing_path: str = "/dashboard"

    def is_protected(self, path: str) -> bool:
        return path in self.protected

    def is_login_page(self, path: str) -> bool:
        return path in self.login_pages


DEFAULT_ROUTES = RouteTable(
    protected=frozenset({
        "/report-viewer", "/patient-id", "/dashboard",
        "/manage-patients", "/all-reports", "/manage-users",
    }),
    public=frozenset({"/", "/login", "/general-login", "/contactus", "/privacy-policy"}),
    login_pages=frozenset({"/login", "/general-login"}),
)


@dataclass(frozen=True)
class RouteDecision:
    action: RouteAction
    path: str
    target: Optional[str] = None
    notice: Optional[str] = None
    notice_level: NoticeLevel = "info"
    navigation_id: int = field(default=0, compare=False)

    @property
    def is_redirect(self) -> bool:
        return self.action == "REDIRECT"


def normalize_path(path: str) -> str:
    path = (path or "/").split("?", 1)[0].split("#", 1)[0]
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def decide(path: str, snapshot: SessionSnapshot, valid: bool, routes: RouteTable = DEFAULT_ROUTES) -> RouteDecision:
    """Pure decision over a settled session; exactly one outcome per call."""
    path = normalize_path(path)
    if snapshot.is_loading:
        return RouteDecision("WAIT", path)

    if not valid and routes.is_protected(path):
        if snapshot.session_expired:
            return RouteDecision("REDIRECT", path, routes.login_path, SESSION_EXPIRED_NOTICE, "warning")
        return RouteDecision("REDIRECT", path, routes.login_path, LOGIN_REQUIRED_NOTICE, "info")

    if valid and snapshot.user is not None and routes.is_login_page(path):
        # Same landing route for every role; the dashboard picks the content variant.
        notice = WELCOME_ADMIN_NOTICE if is_admin(snapshot.user) else WELCOME_NOTICE
        return RouteDecision("REDIRECT", path, routes.landing_path, notice, "success")

    return RouteDecision("RENDER", path)


class RouteGuard:
    """
    Re-evaluated on every navigation and mount. Each evaluate() call is one
    navigation event; if a newer one starts while this one awaits validation,
    this one comes back STALE and must be ignored by the caller.
    """

    def __init__(self, store, routes: RouteTable = DEFAULT_ROUTES):
        self.store = store
        self.routes = routes
        self._navigation_id = 0

    async def evaluate(self, path: str) -> RouteDecision:
        self._navigation_id += 1
        navigation_id = self._navigation_id
        path = normalize_path(path)

        if self.store.is_loading:
            return RouteDecision("WAIT", path, navigation_id=navigation_id)

        valid = await self.store.validate_session()
        if navigation_id != self._navigation_id:
            return RouteDecision("STALE", path, navigation_id=navigation_id)

        decision = decide(path, self.store.snapshot(), valid, self.routes)
        if decision.is_redirect:
            log.info(f"Route guard: {path} -> {decision.target}")
        return RouteDecision(
            decision.action,
            decision.path,
            decision.target,
            decision.notice,
            decision.notice_level,
            navigation_id=navigation_id,
        )
