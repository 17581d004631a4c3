import logging
import os
from dataclasses import dataclass

import streamlit as st

log = logging.getLogger(__name__)

PORTAL_DB = "portal.db"
SESSION_TTL_HOURS = 24


class AuthError(Exception):
    """Base for every failure the session core converts into a user-facing message."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message=None):
        super().__init__(message or self.user_message)
        self.user_message = message or self.user_message


class InvalidInputError(AuthError):
    user_message = "Please fill in the required fields."


class GatewayError(AuthError):
    user_message = "Failed to send or verify the code. Please try again."


class ProfileNotFoundError(AuthError):
    user_message = "No profile is registered for this phone number."


class SessionExpiredError(AuthError):
    user_message = "Your session has expired. Please log in again."


class InternalError(AuthError):
    user_message = "Unexpected error. Please try again."


class OperationInProgressError(AuthError):
    user_message = "Another request is still in progress. Please wait."


def get_secret(key):
    try:
        return st.secrets.get(key)
    except FileNotFoundError:
        return None


def _setting(key, default=None):
    value = get_secret(key)
    if value is None or value == "":
        value = os.getenv(key)
    if value is None or value == "":
        return default
    return value


def _flag(key) -> bool:
    return str(_setting(key, "false")).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AuthConfig:
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_verify_service_sid: str = ""
    dev_bypass: bool = False
    db_path: str = PORTAL_DB
    admin_phone: str = ""
    admin_name: str = "Administrator"

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_verify_service_sid)


def load_auth_config() -> AuthConfig:
    """Resolve settings once at startup: Streamlit secrets first, then environment."""
    config = AuthConfig(
        twilio_account_sid=_setting("TWILIO_ACCOUNT_SID", ""),
        twilio_auth_token=_setting("TWILIO_AUTH_TOKEN", ""),
        twilio_verify_service_sid=_setting("TWILIO_VERIFY_SERVICE_SID", ""),
        dev_bypass=_flag("OTP_DEV_BYPASS"),
        db_path=_setting("PORTAL_DB", PORTAL_DB),
        admin_phone=_setting("ADMIN_PHONE", ""),
        admin_name=_setting("ADMIN_NAME", "Administrator"),
    )
    if config.dev_bypass:
        log.warning("OTP_DEV_BYPASS is enabled: real OTP verification is disabled")
    elif not config.twilio_configured:
        log.warning("Twilio Verify credentials are missing; OTP requests will fail")
    return config


_profile_repo = None
_audit_repo = None


def get_profile_repo(db_path=None):
    from infrastructure.repositories.sqlite_profile_repository import SQLiteProfileRepository

    global _profile_repo
    db_path = db_path or PORTAL_DB
    if _profile_repo is None or _profile_repo.db_path != db_path:
        _profile_repo = SQLiteProfileRepository(db_path)
    return _profile_repo


def get_audit_repo(db_path=None):
    from infrastructure.repositories.sqlite_audit_repository import SQLiteAuditRepository

    global _audit_repo
    db_path = db_path or PORTAL_DB
    if _audit_repo is None or _audit_repo.db_path != db_path:
        _audit_repo = SQLiteAuditRepository(db_path)
    return _audit_repo


def init_portal_db(config: AuthConfig):
    global PORTAL_DB
    PORTAL_DB = config.db_path
    get_profile_repo(config.db_path).init_db()


def bootstrap_admin(config: AuthConfig) -> bool:
    """Create the configured admin profile once. Returns True when a row was written."""
    if not config.admin_phone:
        return False
    repo = get_profile_repo(config.db_path)
    created = repo.ensure_profile(config.admin_phone, "admin", config.admin_name)
    if created:
        log.info("Bootstrapped admin profile")
    return created


def build_otp_gateway(config: AuthConfig):
    from infrastructure.messaging.otp_gateway import DevBypassGateway, TwilioVerifyGateway

    if config.dev_bypass:
        return DevBypassGateway()
    return TwilioVerifyGateway(
        config.twilio_account_sid,
        config.twilio_auth_token,
        config.twilio_verify_service_sid,
    )


def build_session_store(config: AuthConfig, storage):
    """Wire one Session Store context object around the browser session's record storage."""
    from use_cases.profile_resolver import ProfileResolver
    from use_cases.session_persistence import SessionPersistence
    from use_cases.session_store import SessionStore

    return SessionStore(
        gateway=build_otp_gateway(config),
        resolver=ProfileResolver(get_profile_repo(config.db_path)),
        persistence=SessionPersistence(storage),
        dev_bypass=config.dev_bypass,
        audit=get_audit_repo(config.db_path),
    )
