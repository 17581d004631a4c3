"""Phone number -> role-bearing profile lookup, plus the server-side session bindings."""

import logging
from datetime import datetime
from typing import Optional

from infrastructure.repositories.sqlite_profile_repository import ProfileAlreadyExistsError
from use_cases.session_models import Role, UserProfile
from use_cases.session_persistence import to_epoch_ms
from utils.phone import mask_phone, normalize_phone, phone_variants

log = logging.getLogger(__name__)

PROVISIONED_PATIENT_NAME = "Dev Patient"


class ProfileResolver:
    def __init__(self, repo):
        self.repo = repo

    def by_phone(self, phone: str) -> Optional[UserProfile]:
        # Upstream rows may be stored with or without "+"; try both before giving up.
        for candidate in phone_variants(phone):
            record = self.repo.get_profile_by_phone(candidate)
            if record:
                return UserProfile.from_record(record)
        return None

    def provision_patient(self, phone: str) -> UserProfile:
        canonical = normalize_phone(phone)
        try:
            record = self.repo.create_profile(canonical, Role.PATIENT.value, PROVISIONED_PATIENT_NAME)
        except ProfileAlreadyExistsError:
            # Lost a race with another writer; the existing row wins.
            existing = self.by_phone(canonical)
            if existing is None:
                raise
            return existing
        log.info(f"Provisioned patient profile for {mask_phone(canonical)}")
        return UserProfile.from_record(record)

    def bind_session(self, session_id: str, profile: UserProfile, expires_at: datetime) -> None:
        self.repo.create_session(session_id, profile.id, to_epoch_ms(expires_at))

    def by_session(self, session_id: str, expires_at: datetime) -> Optional[UserProfile]:
        """The profile that logged in with this session id; None for unknown or tampered records."""
        if not session_id:
            return None
        record = self.repo.get_session_profile(session_id, to_epoch_ms(expires_at))
        return UserProfile.from_record(record) if record else None

    def unbind_session(self, session_id: str) -> None:
        if session_id:
            self.repo.delete_session(session_id)
