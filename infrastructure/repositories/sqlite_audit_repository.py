import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

log = logging.getLogger(__name__)


class AuditAction(str, Enum):
    OTP_REQUESTED = "OTP_REQUESTED"
    OTP_REQUEST_FAIL = "OTP_REQUEST_FAIL"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAIL = "LOGIN_FAIL"
    DEV_BYPASS_LOGIN = "DEV_BYPASS_LOGIN"
    PROFILE_PROVISIONED = "PROFILE_PROVISIONED"
    LOGOUT = "LOGOUT"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSION_REJECTED = "SESSION_REJECTED"
    RBAC_DENIED = "RBAC_DENIED"
    SYSTEM_ERROR = "SYSTEM_ERROR"


# Raw phone numbers and OTP codes never reach the audit table.
ALLOWED_METADATA_KEYS = frozenset({
    "reason", "error_message", "target_action", "role", "phone_masked", "bypass",
})
_SECRET_MARKERS = ("password", "token", "secret")
MAX_METADATA_LEN = 2000


@dataclass(frozen=True)
class AuditEntry:
    id: int
    ts: str
    actor: str
    actor_role: Optional[str]
    action: str
    target_type: str
    target_id: Optional[str]
    result: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def sanitize_metadata(metadata: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Whitelist keys, drop secret-looking values and cap the JSON size."""
    if metadata is None:
        return None
    safe = {
        k: v for k, v in metadata.items()
        if k in ALLOWED_METADATA_KEYS and not any(m in str(v).lower() for m in _SECRET_MARKERS)
    }
    try:
        encoded = json.dumps(safe)
    except (TypeError, ValueError):
        return json.dumps({"error": "unserializable"})
    if len(encoded) > MAX_METADATA_LEN:
        return json.dumps({"truncated": True})
    return encoded


def _clip(value: Any, limit: int) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))[:limit]


class SQLiteAuditRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def _conn(self):
        return sqlite3.connect(self.db_path)

    def log_action(
        self,
        action: Any,
        target_type: str,
        actor_profile_id: Optional[str] = None,
        actor_role: Optional[Any] = None,
        target_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        result: str = "success",
    ):
        """Append one audit row. Never raises: a broken audit store must not block a login."""
        try:
            row = (
                datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
                _clip(actor_profile_id, 64),
                _clip(actor_role, 20),
                _clip(action, 50) or "UNKNOWN",
                _clip(target_type, 50) or "UNKNOWN",
                _clip(target_id, 100),
                sanitize_metadata(metadata),
                _clip(result, 20) or "unknown",
            )
            with self._conn() as conn:
                conn.execute("""
                    INSERT INTO audit_log
                    (ts, actor_profile_id, actor_role, action, target_type, target_id, metadata_json, result)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, row)
                conn.commit()
        except Exception as e:
            log.error(f"Audit log failed for action {action}: {e}", exc_info=True)

    def get_logs(self, limit: int = 100, action_filter: Optional[str] = None) -> List[AuditEntry]:
        """Newest entries first; the actor is shown by phone when the profile still exists."""
        query = """
            SELECT a.id, a.ts, COALESCE(p.phone, a.actor_profile_id, 'SYSTEM'),
                   a.actor_role, a.action, a.target_type, a.target_id, a.result, a.metadata_json
            FROM audit_log a
            LEFT JOIN profiles p ON a.actor_profile_id = p.id
        """
        params: list = []
        if action_filter:
            query += " WHERE a.action = ?"
            params.append(action_filter)
        query += " ORDER BY a.id DESC LIMIT ?"
        params.append(limit)

        try:
            with self._conn() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        except Exception as e:
            log.error(f"Failed to fetch audit logs: {e}", exc_info=True)
            return []
        return [AuditEntry(*row[:8], metadata=json.loads(row[8]) if row[8] else {}) for row in rows]
