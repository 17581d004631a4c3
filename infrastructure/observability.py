"""
Logging and Sentry wiring for the portal, configured from environment variables.

Events leaving the process are scrubbed of phone numbers, OTP codes and
long tokens before Sentry sees them.
"""

import logging
import os
import re
from typing import Any, Dict

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

SENSITIVE_PATTERNS = [
    re.compile(r"\+?\d[\d\s\-()]{8,}\d"),  # phone numbers
    re.compile(r"\b\d{4,8}\b"),  # OTP codes
    re.compile(r"([a-zA-Z0-9_\-]{30,})"),  # tokens, SIDs
]
SENSITIVE_KEYS = frozenset({"phone", "code", "otp", "auth_token", "portal_session_id"})


def mask_sensitive(val: str) -> str:
    for pattern in SENSITIVE_PATTERNS:
        val = pattern.sub("[REDACTED]", val)
    return val


def _scrub(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in SENSITIVE_KEYS else _scrub(v)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [_scrub(i) for i in obj]
    if isinstance(obj, str):
        return mask_sensitive(obj)
    return obj


def _scrub_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Dict[str, Any]:
    """Sentry before_send hook over frame locals, log entries and breadcrumbs."""
    try:
        for exc in event.get("exception", {}).get("values", []):
            for frame in exc.get("stacktrace", {}).get("frames", []):
                if "vars" in frame:
                    frame["vars"] = _scrub(frame["vars"])
        if "logentry" in event:
            event["logentry"] = _scrub(event["logentry"])
        breadcrumbs = event.get("breadcrumbs")
        if isinstance(breadcrumbs, dict) and "values" in breadcrumbs:
            breadcrumbs["values"] = _scrub(breadcrumbs["values"])
    except Exception as e:
        log.warning(f"Sentry scrubber failed, sending event as is: {e}")
    return event


def _configure_logging() -> None:
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _init_sentry(dsn: str) -> None:
    try:
        import sentry_sdk
    except ImportError:
        log.warning("SENTRY_DSN provided but sentry-sdk is not installed. Skipping Sentry init.")
        return

    env = os.getenv("SENTRY_ENV", "development")
    sentry_sdk.init(
        dsn=dsn,
        environment=env,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2")),
        send_default_pii=False,
        before_send=_scrub_sensitive_data,
    )
    log.info(f"Sentry SDK initialized (env: {env})")


def setup_observability() -> None:
    """Call once, before anything else logs."""
    _configure_logging()
    dsn = os.getenv("SENTRY_DSN")
    if dsn:
        _init_sentry(dsn)
    else:
        log.info("SENTRY_DSN not provided. Running without Sentry.")
