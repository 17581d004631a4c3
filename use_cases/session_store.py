"""
Session Store: the authentication state machine.

One instance per browser session. It owns the in-memory Session (user,
loading/error flags) and is the only writer of the persisted session record.
The browser record carries only a session id and expiry; which profile a
session id belongs to is recorded server-side at login and looked up on reload.
Every public coroutine converts failures into `error` plus a False/None
result; nothing raises to the UI layer.

Concurrency rules (single event loop):
  * at most one operation is active at a time; `is_loading` mirrors that;
  * concurrent validate_session() calls share the active validation;
  * request_code/verify_code/set_login_user refuse to start while busy;
  * logout() and every commit bump a generation counter, and results of
    operations started under an older generation are discarded.
"""

import asyncio
import logging
from typing import Optional

from auth import (
    AuthError,
    InternalError,
    InvalidInputError,
    OperationInProgressError,
    ProfileNotFoundError,
    SessionExpiredError,
)
from infrastructure.repositories.sqlite_audit_repository import AuditAction
from use_cases.session_models import SessionSnapshot, UserProfile
from use_cases.session_persistence import RecordStatus
from utils.phone import mask_phone, normalize_phone

log = logging.getLogger(__name__)

_VALIDATE = "validate_session"


class SessionStore:
    def __init__(self, gateway, resolver, persistence, dev_bypass: bool = False, audit=None):
        self._gateway = gateway
        self._resolver = resolver
        self._persistence = persistence
        self._dev_bypass = dev_bypass
        self._audit = audit

        self._user: Optional[UserProfile] = None
        self._session_id: Optional[str] = None
        self._error: Optional[str] = None
        self._otp_sent = False
        self._session_expired = False
        self.last_failure: Optional[AuthError] = None

        self._generation = 0
        self._active: Optional[asyncio.Future] = None
        self._active_kind: Optional[str] = None

    # --- read side -------------------------------------------------------

    @property
    def user(self) -> Optional[UserProfile]:
        return self._user

    @property
    def is_loading(self) -> bool:
        return self._active is not None

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def otp_sent(self) -> bool:
        return self._otp_sent

    @property
    def session_expired(self) -> bool:
        return self._session_expired

    @property
    def dev_bypass(self) -> bool:
        return self._dev_bypass

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            user=self._user,
            is_loading=self.is_loading,
            error=self._error,
            otp_sent=self._otp_sent,
            session_expired=self._session_expired,
        )

    # --- operation bookkeeping -------------------------------------------

    def _start(self, kind: str, coro) -> asyncio.Future:
        task = asyncio.ensure_future(self._guarded(coro))
        self._active = task
        self._active_kind = kind
        return task

    async def _guarded(self, coro):
        try:
            return await coro
        finally:
            if self._active is asyncio.current_task():
                self._active = None
                self._active_kind = None

    def _refuse_if_busy(self) -> bool:
        if self._active is None:
            return False
        self._record_failure(OperationInProgressError())
        log.info(f"Rejected overlapping auth operation while {self._active_kind} is running")
        return True

    def _record_failure(self, exc: AuthError):
        self.last_failure = exc
        self._error = exc.user_message

    def _clear_failure(self):
        self.last_failure = None
        self._error = None

    def _audit_event(self, action: AuditAction, user: Optional[UserProfile] = None, **kwargs):
        if self._audit is None:
            return
        self._audit.log_action(
            action,
            target_type="session",
            actor_profile_id=user.id if user else None,
            actor_role=user.profile_type.value if user else None,
            **kwargs,
        )

    # --- validate_session ------------------------------------------------

    async def validate_session(self) -> bool:
        while self._active is not None:
            if self._active_kind == _VALIDATE:
                return await asyncio.shield(self._active)
            # Let the running login step settle first, then validate its outcome.
            await asyncio.wait({self._active})
        return await asyncio.shield(self._start(_VALIDATE, self._validate()))

    async def _validate(self) -> bool:
        generation = self._generation
        self._clear_failure()
        try:
            status, record = self._persistence.check()
            if generation != self._generation:
                return self._user is not None

            if status is not RecordStatus.VALID:
                expired = status is RecordStatus.EXPIRED
                if expired:
                    log.info("Persisted session record expired; clearing session")
                    self._audit_event(AuditAction.SESSION_EXPIRED, self._user, result="deny")
                    # Silent: only the flag and the typed failure, no user-facing error.
                    self.last_failure = SessionExpiredError()
                self._invalidate(expired=expired, session_id=record.session_id if record else None)
                return False

            if self._user is not None:
                return True

            profile = await asyncio.to_thread(self._resolver.by_session, record.session_id, record.expires_at)
            if generation != self._generation:
                return self._user is not None
            if profile is None:
                log.warning("Persisted session is not bound to any profile; rejecting it")
                self._audit_event(AuditAction.SESSION_REJECTED, metadata={"reason": "unbound_session"}, result="deny")
                self._invalidate(expired=False, session_id=record.session_id)
                return False

            self._user = profile
            self._session_id = record.session_id
            self._session_expired = False
            return True
        except AuthError as e:
            self._record_failure(e)
            return False
        except Exception as e:
            log.error(f"Session validation failed: {e}", exc_info=True)
            self._record_failure(InternalError())
            self._audit_event(AuditAction.SYSTEM_ERROR, metadata={"reason": "validate_session"}, result="error")
            return False

    def _invalidate(self, expired: bool, session_id: Optional[str] = None):
        self._user = None
        self._session_id = None
        self._session_expired = expired
        self._persistence.delete()
        if session_id:
            self._resolver.unbind_session(session_id)

    # --- OTP flow --------------------------------------------------------

    async def request_code(self, phone: str) -> bool:
        if self._refuse_if_busy():
            return False
        return await self._start("request_code", self._request_code(phone))

    async def _request_code(self, phone: str) -> bool:
        self._clear_failure()
        canonical = normalize_phone(phone)
        try:
            if not canonical:
                raise InvalidInputError("Please enter your phone number.")
            await asyncio.to_thread(self._gateway.send, canonical)
        except AuthError as e:
            self._record_failure(e)
            self._audit_event(
                AuditAction.OTP_REQUEST_FAIL,
                metadata={"reason": type(e).__name__, "phone_masked": mask_phone(canonical)},
                result="fail",
            )
            return False
        except Exception as e:
            log.error(f"OTP request failed: {e}", exc_info=True)
            self._record_failure(InternalError())
            return False

        self._otp_sent = True
        self._audit_event(AuditAction.OTP_REQUESTED, metadata={"phone_masked": mask_phone(canonical)})
        return True

    async def verify_code(self, phone: str, code: str) -> Optional[UserProfile]:
        if self._refuse_if_busy():
            return None
        return await self._start("verify_code", self._verify_code(phone, code))

    async def _verify_code(self, phone: str, code: str) -> Optional[UserProfile]:
        generation = self._generation
        self._clear_failure()
        canonical = normalize_phone(phone)
        code = (code or "").strip()
        try:
            if not canonical or not code:
                raise InvalidInputError("Please enter your phone number and the code.")
            await asyncio.to_thread(self._gateway.verify, canonical, code)

            profile = await asyncio.to_thread(self._resolver.by_phone, canonical)
            if profile is None:
                if self._dev_bypass:
                    profile = await asyncio.to_thread(self._resolver.provision_patient, canonical)
                    self._audit_event(AuditAction.PROFILE_PROVISIONED, profile, metadata={"bypass": True})
                else:
                    raise ProfileNotFoundError()

            if generation != self._generation:
                log.info("Discarding verification that finished after a newer session change")
                return None
            self._commit(profile)
        except AuthError as e:
            self._record_failure(e)
            self._audit_event(
                AuditAction.LOGIN_FAIL,
                metadata={"reason": type(e).__name__, "phone_masked": mask_phone(canonical)},
                result="fail",
            )
            return None
        except Exception as e:
            log.error(f"OTP verification failed: {e}", exc_info=True)
            self._record_failure(InternalError())
            return None

        action = AuditAction.DEV_BYPASS_LOGIN if self._dev_bypass else AuditAction.LOGIN_SUCCESS
        self._audit_event(action, profile)
        return profile

    async def set_login_user(self, user: UserProfile) -> None:
        """Commit a profile that was verified out-of-band, exactly like verify_code does."""
        if self._refuse_if_busy():
            return None
        await self._start("set_login_user", self._set_login_user(user))

    async def _set_login_user(self, user: UserProfile) -> None:
        self._clear_failure()
        try:
            if user is None or not normalize_phone(user.phone):
                raise InvalidInputError("A verified profile with a phone number is required.")
            self._commit(user)
        except AuthError as e:
            self._record_failure(e)
            return None
        except Exception as e:
            log.error(f"Committing login user failed: {e}", exc_info=True)
            self._record_failure(InternalError())
            return None
        self._audit_event(AuditAction.LOGIN_SUCCESS, user, metadata={"reason": "set_login_user"})

    def _commit(self, profile: UserProfile):
        self._generation += 1
        # Each login writes a fresh record over any previous one.
        if self._session_id:
            self._resolver.unbind_session(self._session_id)
        record = self._persistence.create_record()
        self._resolver.bind_session(record.session_id, profile, record.expires_at)
        self._session_id = record.session_id
        self._user = profile
        self._otp_sent = False
        self._session_expired = False
        self._clear_failure()
        log.info(f"Session committed for {mask_phone(profile.phone)} ({profile.profile_type.value})")

    def reset_otp_flow(self):
        """Back to phone entry, e.g. when the user wants to change the number."""
        self._otp_sent = False
        self._clear_failure()

    # --- logout ----------------------------------------------------------

    def logout(self) -> None:
        self._generation += 1
        user = self._user
        session_id = self._session_id
        self._user = None
        self._session_id = None
        self._otp_sent = False
        self._session_expired = False
        self._clear_failure()
        try:
            self._persistence.delete()
            if session_id:
                self._resolver.unbind_session(session_id)
        except Exception as e:
            # Logout never fails; the in-memory session is already cleared.
            log.error(f"Failed to delete persisted session on logout: {e}", exc_info=True)
        self._audit_event(AuditAction.LOGOUT, user)
