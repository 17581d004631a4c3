"""Session DTOs shared across application layers."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from utils.phone import normalize_phone


class Role(str, Enum):
    ADMIN = "admin"
    PATIENT = "patient"

    @classmethod
    def parse(cls, raw: Any) -> "Role":
        """Unknown backend values fall back to the lowest-privilege role."""
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.PATIENT


@dataclass(frozen=True)
class UserProfile:
    id: str
    phone: str
    profile_type: Role
    name: str = ""
    created_at: str = ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "UserProfile":
        """Deserialization boundary for profile rows coming from the store."""
        return cls(
            id=str(record["id"]),
            phone=normalize_phone(record.get("phone") or ""),
            profile_type=Role.parse(record.get("profile_type")),
            name=record.get("name") or "",
            created_at=record.get("created_at") or "",
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Settled, read-only view of the Session Store."""

    user: Optional[UserProfile] = None
    is_loading: bool = False
    error: Optional[str] = None
    otp_sent: bool = False
    session_expired: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


def is_admin(user: Optional[UserProfile]) -> bool:
    return user is not None and user.profile_type is Role.ADMIN


def is_patient(user: Optional[UserProfile]) -> bool:
    return user is not None and user.profile_type is Role.PATIENT
