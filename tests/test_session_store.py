import asyncio
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from auth import (
    GatewayError,
    InvalidInputError,
    OperationInProgressError,
    ProfileNotFoundError,
    SessionExpiredError,
)
from infrastructure.messaging.otp_gateway import DevBypassGateway
from infrastructure.repositories.sqlite_audit_repository import AuditAction
from infrastructure.repositories.sqlite_profile_repository import SQLiteProfileRepository
from infrastructure.storage.record_storage import MemoryRecordStorage
from use_cases.profile_resolver import ProfileResolver
from use_cases.session_models import Role, UserProfile
from use_cases.session_persistence import SESSION_EXPIRY_KEY, SESSION_ID_KEY, SessionPersistence
from use_cases.session_store import SessionStore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
PHONE = "+6591234567"
PATIENT = UserProfile(id="p1", phone=PHONE, profile_type=Role.PATIENT, name="Jane")
ADMIN = UserProfile(id="a1", phone="+6590000001", profile_type=Role.ADMIN, name="Admin")


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class FakeGateway:
    """Accepts "123456" only; optionally blocks until released."""

    def __init__(self, release=None):
        self.sent = []
        self.release = release

    def send(self, phone):
        if self.release is not None:
            self.release.wait(2)
        self.sent.append(phone)

    def verify(self, phone, code):
        if self.release is not None:
            self.release.wait(2)
        if code != "123456":
            raise GatewayError("Invalid or expired code. Please try again.")


class FakeResolver:
    def __init__(self, profiles=None, release=None):
        self.profiles = dict(profiles or {})
        self.sessions = {}
        self.release = release
        self.lookups = 0
        self.provisioned = []

    def by_phone(self, phone):
        self.lookups += 1
        return self.profiles.get(phone)

    def provision_patient(self, phone):
        self.provisioned.append(phone)
        return UserProfile(id="new", phone=phone, profile_type=Role.PATIENT)

    def bind_session(self, session_id, profile, expires_at):
        self.sessions[session_id] = (profile, expires_at)

    def by_session(self, session_id, expires_at):
        self.lookups += 1
        if self.release is not None:
            self.release.wait(2)
        bound = self.sessions.get(session_id)
        if bound is None or expires_at > bound[1]:
            return None
        return bound[0]

    def unbind_session(self, session_id):
        self.sessions.pop(session_id, None)


def make_store(gateway=None, resolver=None, storage=None, clock=None, dev_bypass=False, audit=None):
    storage = storage if storage is not None else MemoryRecordStorage()
    persistence = SessionPersistence(storage, clock=clock or FakeClock(T0))
    return SessionStore(
        gateway=gateway or FakeGateway(),
        resolver=resolver or FakeResolver({PHONE: PATIENT}),
        persistence=persistence,
        dev_bypass=dev_bypass,
        audit=audit,
    )


def seed_session(storage, clock, resolver, profile=PATIENT):
    """A record left behind by an earlier login, as seen after a page reload."""
    record = SessionPersistence(storage, clock=clock).create_record()
    resolver.bind_session(record.session_id, profile, record.expires_at)
    return record


def epoch_ms(moment):
    return str(int(moment.timestamp() * 1000))


def audited_actions(audit):
    return [c.args[0] for c in audit.log_action.call_args_list]


@pytest.mark.asyncio
async def test_request_code_sends_normalized_phone():
    gateway = FakeGateway()
    audit = MagicMock()
    store = make_store(gateway=gateway, audit=audit)

    assert await store.request_code("65 9123 4567") is True

    assert gateway.sent == [PHONE]
    assert store.otp_sent is True
    assert store.error is None
    assert store.is_loading is False
    assert audited_actions(audit) == [AuditAction.OTP_REQUESTED]


@pytest.mark.asyncio
async def test_request_code_empty_phone():
    gateway = FakeGateway()
    store = make_store(gateway=gateway)

    assert await store.request_code("   ") is False

    assert gateway.sent == []
    assert store.otp_sent is False
    assert isinstance(store.last_failure, InvalidInputError)
    assert store.error == "Please enter your phone number."


@pytest.mark.asyncio
async def test_request_code_gateway_failure():
    gateway = MagicMock()
    gateway.send.side_effect = GatewayError()
    audit = MagicMock()
    store = make_store(gateway=gateway, audit=audit)

    assert await store.request_code(PHONE) is False

    assert store.otp_sent is False
    assert store.error == GatewayError.user_message
    assert audited_actions(audit) == [AuditAction.OTP_REQUEST_FAIL]


@pytest.mark.asyncio
async def test_verify_code_commits_session():
    storage = MemoryRecordStorage()
    resolver = FakeResolver({PHONE: PATIENT})
    audit = MagicMock()
    store = make_store(resolver=resolver, storage=storage, audit=audit)
    await store.request_code(PHONE)

    user = await store.verify_code(PHONE, "123456")

    assert user == PATIENT
    assert store.user == PATIENT
    assert store.otp_sent is False
    assert store.snapshot().is_authenticated is True
    stored = storage.read((SESSION_ID_KEY, SESSION_EXPIRY_KEY, "portal_auth_phone"))
    assert set(stored) == {SESSION_ID_KEY, SESSION_EXPIRY_KEY}
    assert stored[SESSION_ID_KEY].startswith("session_")
    assert resolver.sessions[stored[SESSION_ID_KEY]][0] == PATIENT
    assert AuditAction.LOGIN_SUCCESS in audited_actions(audit)


@pytest.mark.asyncio
async def test_verify_code_wrong_code():
    storage = MemoryRecordStorage()
    store = make_store(storage=storage)

    assert await store.verify_code(PHONE, "000000") is None

    assert store.user is None
    assert store.error == "Invalid or expired code. Please try again."
    assert storage.read((SESSION_ID_KEY,)) == {}


@pytest.mark.asyncio
async def test_verify_code_missing_inputs():
    store = make_store()
    assert await store.verify_code(PHONE, "  ") is None
    assert isinstance(store.last_failure, InvalidInputError)


@pytest.mark.asyncio
async def test_verify_code_unknown_profile_in_normal_mode():
    storage = MemoryRecordStorage()
    resolver = FakeResolver({})
    audit = MagicMock()
    store = make_store(resolver=resolver, storage=storage, audit=audit)

    assert await store.verify_code(PHONE, "123456") is None

    assert resolver.provisioned == []
    assert isinstance(store.last_failure, ProfileNotFoundError)
    assert store.error == ProfileNotFoundError.user_message
    assert storage.read((SESSION_ID_KEY,)) == {}
    assert resolver.sessions == {}
    assert audited_actions(audit) == [AuditAction.LOGIN_FAIL]


@pytest.mark.asyncio
async def test_dev_bypass_login_provisions_patient(tmp_path):
    repo = SQLiteProfileRepository(str(tmp_path / "portal.db"))
    repo.init_db()
    storage = MemoryRecordStorage()
    audit = MagicMock()
    store = make_store(
        gateway=DevBypassGateway(),
        resolver=ProfileResolver(repo),
        storage=storage,
        dev_bypass=True,
        audit=audit,
    )

    user = await store.verify_code("6591234567", "anything")

    assert user is not None
    assert user.phone == PHONE
    assert user.profile_type is Role.PATIENT
    assert repo.get_profile_by_phone(PHONE)["id"] == user.id
    expiry_ms = int(storage.read((SESSION_EXPIRY_KEY,))[SESSION_EXPIRY_KEY])
    assert expiry_ms == int((T0 + timedelta(hours=24)).timestamp() * 1000)
    actions = audited_actions(audit)
    assert AuditAction.PROFILE_PROVISIONED in actions
    assert actions[-1] == AuditAction.DEV_BYPASS_LOGIN


@pytest.mark.asyncio
async def test_dev_bypass_keeps_existing_role():
    resolver = FakeResolver({ADMIN.phone: ADMIN})
    store = make_store(gateway=DevBypassGateway(), resolver=resolver, dev_bypass=True)

    user = await store.verify_code(ADMIN.phone, "x")

    assert user == ADMIN
    assert resolver.provisioned == []


@pytest.mark.asyncio
async def test_validate_session_restores_user_after_reload():
    storage = MemoryRecordStorage()
    clock = FakeClock(T0)
    resolver = FakeResolver()
    seed_session(storage, clock, resolver)
    store = make_store(resolver=resolver, storage=storage, clock=clock)

    assert await store.validate_session() is True
    assert store.user == PATIENT


@pytest.mark.asyncio
async def test_validate_session_without_record():
    store = make_store()
    assert await store.validate_session() is False
    assert store.user is None
    assert store.session_expired is False


@pytest.mark.asyncio
async def test_validate_session_expired_record():
    storage = MemoryRecordStorage()
    clock = FakeClock(T0)
    resolver = FakeResolver({PHONE: PATIENT})
    audit = MagicMock()
    store = make_store(resolver=resolver, storage=storage, clock=clock, audit=audit)
    await store.verify_code(PHONE, "123456")

    clock.now = T0 + timedelta(hours=24, seconds=1)

    assert await store.validate_session() is False
    assert store.user is None
    assert store.session_expired is True
    assert isinstance(store.last_failure, SessionExpiredError)
    assert store.error is None
    assert storage.read((SESSION_ID_KEY, SESSION_EXPIRY_KEY)) == {}
    assert resolver.sessions == {}
    assert AuditAction.SESSION_EXPIRED in audited_actions(audit)


@pytest.mark.asyncio
async def test_forged_record_with_admin_phone_is_rejected():
    # Hand-written cookies: a made-up session id plus the admin's phone number.
    storage = MemoryRecordStorage({
        SESSION_ID_KEY: "anything",
        SESSION_EXPIRY_KEY: epoch_ms(T0 + timedelta(days=1)),
        "portal_auth_phone": ADMIN.phone,
    })
    gateway = MagicMock()
    gateway.verify.side_effect = GatewayError()
    audit = MagicMock()
    store = make_store(
        gateway=gateway,
        resolver=FakeResolver({ADMIN.phone: ADMIN}),
        storage=storage,
        audit=audit,
    )

    assert await store.validate_session() is False

    assert store.user is None
    assert store.session_expired is False
    assert store.error is None
    assert storage.read((SESSION_ID_KEY, SESSION_EXPIRY_KEY)) == {}
    assert audited_actions(audit) == [AuditAction.SESSION_REJECTED]
    gateway.verify.assert_not_called()


@pytest.mark.asyncio
async def test_record_with_extended_expiry_is_rejected():
    storage = MemoryRecordStorage()
    clock = FakeClock(T0)
    resolver = FakeResolver()
    record = seed_session(storage, clock, resolver)
    storage.write({SESSION_EXPIRY_KEY: epoch_ms(T0 + timedelta(days=30))})
    store = make_store(resolver=resolver, storage=storage, clock=clock)

    assert await store.validate_session() is False

    assert store.user is None
    assert storage.read((SESSION_ID_KEY,)) == {}
    assert record.session_id not in resolver.sessions


@pytest.mark.asyncio
async def test_reload_restores_user_through_sqlite_binding(tmp_path):
    repo = SQLiteProfileRepository(str(tmp_path / "portal.db"))
    repo.init_db()
    repo.create_profile(ADMIN.phone, "admin", "Admin")
    resolver = ProfileResolver(repo)
    storage = MemoryRecordStorage()
    clock = FakeClock(T0)

    first = make_store(resolver=resolver, storage=storage, clock=clock)
    user = await first.verify_code(ADMIN.phone, "123456")

    # A fresh store over the same browser record, as after a full page reload.
    reloaded = make_store(resolver=resolver, storage=storage, clock=clock)
    assert await reloaded.validate_session() is True
    assert reloaded.user == user

    forged = make_store(
        resolver=resolver,
        storage=MemoryRecordStorage({
            SESSION_ID_KEY: "session_" + "0" * 32,
            SESSION_EXPIRY_KEY: epoch_ms(T0 + timedelta(hours=1)),
        }),
        clock=clock,
    )
    assert await forged.validate_session() is False
    assert forged.user is None

    copied = storage.read((SESSION_ID_KEY, SESSION_EXPIRY_KEY))
    reloaded.logout()
    replayed = make_store(resolver=resolver, storage=MemoryRecordStorage(copied), clock=clock)
    assert await replayed.validate_session() is False


@pytest.mark.asyncio
async def test_relogin_replaces_previous_binding():
    resolver = FakeResolver({PHONE: PATIENT, ADMIN.phone: ADMIN})
    store = make_store(resolver=resolver)

    await store.verify_code(PHONE, "123456")
    await store.set_login_user(ADMIN)

    assert [bound[0] for bound in resolver.sessions.values()] == [ADMIN]


@pytest.mark.asyncio
async def test_validate_clears_stale_verify_error():
    store = make_store()
    assert await store.verify_code(PHONE, "000000") is None
    assert store.error == "Invalid or expired code. Please try again."

    assert await store.validate_session() is False

    assert store.error is None
    assert store.last_failure is None


@pytest.mark.asyncio
async def test_validate_session_keeps_loaded_user_without_lookup():
    resolver = FakeResolver({PHONE: PATIENT})
    store = make_store(resolver=resolver)
    await store.verify_code(PHONE, "123456")
    lookups = resolver.lookups

    assert await store.validate_session() is True
    assert resolver.lookups == lookups


@pytest.mark.asyncio
async def test_concurrent_validations_share_one_lookup():
    storage = MemoryRecordStorage()
    clock = FakeClock(T0)
    resolver = FakeResolver()
    seed_session(storage, clock, resolver)
    store = make_store(resolver=resolver, storage=storage, clock=clock)

    results = await asyncio.gather(store.validate_session(), store.validate_session(), store.validate_session())

    assert results == [True, True, True]
    assert resolver.lookups == 1
    assert store.is_loading is False


@pytest.mark.asyncio
async def test_is_loading_while_validation_runs():
    release = threading.Event()
    storage = MemoryRecordStorage()
    clock = FakeClock(T0)
    resolver = FakeResolver(release=release)
    seed_session(storage, clock, resolver)
    store = make_store(resolver=resolver, storage=storage, clock=clock)

    task = asyncio.ensure_future(store.validate_session())
    await asyncio.sleep(0.01)
    assert store.is_loading is True

    release.set()
    assert await task is True
    assert store.is_loading is False


@pytest.mark.asyncio
async def test_second_submission_rejected_while_busy():
    release = threading.Event()
    gateway = FakeGateway(release=release)
    store = make_store(gateway=gateway)

    first = asyncio.ensure_future(store.verify_code(PHONE, "123456"))
    await asyncio.sleep(0.01)

    assert await store.request_code(PHONE) is False
    assert isinstance(store.last_failure, OperationInProgressError)

    release.set()
    assert await first == PATIENT
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_logout_then_validate():
    storage = MemoryRecordStorage()
    resolver = FakeResolver({PHONE: PATIENT})
    audit = MagicMock()
    store = make_store(resolver=resolver, storage=storage, audit=audit)
    await store.verify_code(PHONE, "123456")

    store.logout()

    assert store.user is None
    assert storage.read((SESSION_ID_KEY, SESSION_EXPIRY_KEY)) == {}
    assert resolver.sessions == {}
    assert await store.validate_session() is False
    assert store.user is None
    assert audited_actions(audit)[-1] == AuditAction.LOGOUT


@pytest.mark.asyncio
async def test_validation_finishing_after_logout_is_discarded():
    release = threading.Event()
    storage = MemoryRecordStorage()
    clock = FakeClock(T0)
    resolver = FakeResolver(release=release)
    seed_session(storage, clock, resolver)
    store = make_store(resolver=resolver, storage=storage, clock=clock)

    task = asyncio.ensure_future(store.validate_session())
    await asyncio.sleep(0.01)
    store.logout()
    release.set()

    assert await task is False
    assert store.user is None


@pytest.mark.asyncio
async def test_verification_finishing_after_logout_is_discarded():
    release = threading.Event()
    storage = MemoryRecordStorage()
    store = make_store(gateway=FakeGateway(release=release), storage=storage)

    task = asyncio.ensure_future(store.verify_code(PHONE, "123456"))
    await asyncio.sleep(0.01)
    store.logout()
    release.set()

    assert await task is None
    assert store.user is None
    assert storage.read((SESSION_ID_KEY,)) == {}


@pytest.mark.asyncio
async def test_logout_survives_storage_failure():
    storage = MagicMock()
    storage.remove.side_effect = OSError("disk gone")
    store = make_store(storage=storage)

    store.logout()

    assert store.user is None


@pytest.mark.asyncio
async def test_set_login_user_commits_like_verify():
    storage = MemoryRecordStorage()
    resolver = FakeResolver()
    store = make_store(resolver=resolver, storage=storage)

    await store.set_login_user(ADMIN)

    assert store.user == ADMIN
    session_id = storage.read((SESSION_ID_KEY,))[SESSION_ID_KEY]
    assert resolver.sessions[session_id][0] == ADMIN
    assert store.snapshot().is_authenticated is True


@pytest.mark.asyncio
async def test_set_login_user_requires_phone():
    store = make_store()
    await store.set_login_user(UserProfile(id="x", phone="", profile_type=Role.PATIENT))
    assert store.user is None
    assert isinstance(store.last_failure, InvalidInputError)


@pytest.mark.asyncio
async def test_unexpected_resolver_error_becomes_internal_error():
    storage = MemoryRecordStorage()
    clock = FakeClock(T0)
    resolver = MagicMock()
    seed_session(storage, clock, resolver)
    resolver.by_session.side_effect = RuntimeError("db locked")
    audit = MagicMock()
    store = make_store(resolver=resolver, storage=storage, clock=clock, audit=audit)

    assert await store.validate_session() is False
    assert store.error == "Unexpected error. Please try again."
    assert audited_actions(audit) == [AuditAction.SYSTEM_ERROR]


@pytest.mark.asyncio
async def test_reset_otp_flow():
    store = make_store()
    await store.request_code(PHONE)
    store.reset_otp_flow()
    assert store.otp_sent is False
    assert store.error is None
