"""Startup orchestration for application bootstrap."""

from dataclasses import dataclass
from typing import Literal, Tuple

import auth
from utils import session_manager

StartupStatus = Literal["CONTINUE", "STOP"]


@dataclass(frozen=True)
class StartupResult:
    """Result contract for startup/bootstrap orchestration."""

    status: StartupStatus
    planned_steps: Tuple[str, ...]
    dev_bypass: bool = False


def run_startup() -> StartupResult:
    """Resolve config, prepare the portal DB and the session state keys."""
    executed_steps = []

    config = session_manager.get_auth_config()
    executed_steps.append("load_auth_config")

    auth.init_portal_db(config)
    executed_steps.append("init_portal_db")

    if auth.bootstrap_admin(config):
        executed_steps.append("bootstrap_admin")

    session_manager.init_session_state()
    executed_steps.append("init_session_state")

    return StartupResult(status="CONTINUE", planned_steps=tuple(executed_steps), dev_bypass=config.dev_bypass)
