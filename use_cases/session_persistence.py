"""Durable "a session exists" marker with an absolute 24h expiry."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Tuple

log = logging.getLogger(__name__)

SESSION_ID_KEY = "portal_session_id"
SESSION_EXPIRY_KEY = "portal_session_expiry"
SESSION_TTL = timedelta(hours=24)


class RecordStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    ABSENT = "absent"


@dataclass(frozen=True)
class PersistedSessionRecord:
    session_id: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    return int(round(moment.timestamp() * 1000))


class SessionPersistence:
    """
    Pure liveness signal: holds no identity information. The record is only
    ever created or deleted, never extended.
    """

    def __init__(self, storage, clock: Callable[[], datetime] = _utcnow):
        self.storage = storage
        self._clock = clock

    def create(self) -> str:
        return self.create_record().session_id

    def create_record(self) -> PersistedSessionRecord:
        session_id = f"session_{uuid.uuid4().hex}"
        expires_ms = int((self._clock() + SESSION_TTL).timestamp() * 1000)
        self.storage.write({
            SESSION_ID_KEY: session_id,
            SESSION_EXPIRY_KEY: str(expires_ms),
        })
        return PersistedSessionRecord(
            session_id=session_id,
            expires_at=datetime.fromtimestamp(expires_ms / 1000, tz=timezone.utc),
        )

    def check(self) -> Tuple[RecordStatus, Optional[PersistedSessionRecord]]:
        """Classify the stored record; expired or corrupt records are deleted."""
        raw = self.storage.read((SESSION_ID_KEY, SESSION_EXPIRY_KEY))
        if not raw:
            return RecordStatus.ABSENT, None

        session_id = raw.get(SESSION_ID_KEY)
        try:
            expires_ms = int(raw[SESSION_EXPIRY_KEY])
            expires_at = datetime.fromtimestamp(expires_ms / 1000, tz=timezone.utc)
        except (KeyError, ValueError, OverflowError, OSError):
            log.warning("Discarding persisted session record with a missing or corrupt expiry")
            self.delete()
            return RecordStatus.EXPIRED, None

        record = PersistedSessionRecord(session_id=session_id or "", expires_at=expires_at)
        if not session_id or self._clock() >= expires_at:
            self.delete()
            return RecordStatus.EXPIRED, record
        return RecordStatus.VALID, record

    def read_if_valid(self) -> Optional[str]:
        status, record = self.check()
        if status is RecordStatus.VALID:
            return record.session_id
        return None

    def delete(self) -> None:
        self.storage.remove((SESSION_ID_KEY, SESSION_EXPIRY_KEY))
