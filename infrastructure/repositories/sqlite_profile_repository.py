import hashlib
import sqlite3
import uuid
from datetime import datetime, timezone

from utils.phone import normalize_phone


class ProfileAlreadyExistsError(Exception):
    pass


class SQLiteProfileRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def _conn(self):
        return sqlite3.connect(self.db_path)

    def _get_current_version(self, conn) -> int:
        row = conn.execute("SELECT version FROM schema_info").fetchone()
        return row[0] if row else 0

    def _migrate_v1(self, conn):
        """Baseline schema (v1)."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                phone TEXT NOT NULL UNIQUE,
                profile_type TEXT NOT NULL DEFAULT 'patient',
                name TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            )
        """)

    def _migrate_v2(self, conn):
        """Audit trail (v2)."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TEXT NOT NULL,
                actor_profile_id TEXT,
                actor_role TEXT,
                action TEXT NOT NULL,
                target_type TEXT NOT NULL,
                target_id TEXT,
                metadata_json TEXT,
                result TEXT NOT NULL
            )
        """)

    def _migrate_v3(self, conn):
        """Server-side session bindings (v3). Only a hash of the session id is stored."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_hash TEXT PRIMARY KEY,
                profile_id TEXT NOT NULL,
                expires_at INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

    def init_db(self):
        MIGRATIONS = [self._migrate_v1, self._migrate_v2, self._migrate_v3]

        with self._conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_info (
                    version INTEGER NOT NULL
                )
            """)
            current_version = self._get_current_version(conn)
            if conn.execute("SELECT COUNT(*) FROM schema_info").fetchone()[0] == 0:
                conn.execute("INSERT INTO schema_info (version) VALUES (?)", (current_version,))

            for i in range(current_version, len(MIGRATIONS)):
                target_version = i + 1
                try:
                    MIGRATIONS[i](conn)
                    conn.execute("UPDATE schema_info SET version = ?", (target_version,))
                except Exception as e:
                    # The surrounding connection context rolls back every step of this run.
                    raise RuntimeError(f"Database migration to v{target_version} failed: {e}") from e

            conn.commit()

    def get_profile_by_phone(self, phone: str):
        """Exact match on the stored value; callers decide which forms to try."""
        with self._conn() as conn:
            row = conn.execute("""
                SELECT id, phone, profile_type, name, created_at
                FROM profiles WHERE phone = ?
            """, (phone,)).fetchone()
            if row:
                return {"id": row[0], "phone": row[1], "profile_type": row[2], "name": row[3], "created_at": row[4]}
            return None

    def create_profile(self, phone: str, profile_type: str = "patient", name: str = ""):
        canonical = normalize_phone(phone)
        if not canonical:
            raise ValueError("phone is required")
        record = {
            "id": uuid.uuid4().hex,
            "phone": canonical,
            "profile_type": profile_type,
            "name": name,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._conn() as conn:
            try:
                conn.execute("""
                    INSERT INTO profiles (id, phone, profile_type, name, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (record["id"], record["phone"], record["profile_type"], record["name"], record["created_at"]))
                conn.commit()
            except sqlite3.IntegrityError as e:
                raise ProfileAlreadyExistsError(f"Profile for {canonical} already exists") from e
        return record

    def ensure_profile(self, phone: str, profile_type: str, name: str = "") -> bool:
        canonical = normalize_phone(phone)
        if self.get_profile_by_phone(canonical) or self.get_profile_by_phone(canonical.lstrip("+")):
            return False
        try:
            self.create_profile(canonical, profile_type, name)
        except ProfileAlreadyExistsError:
            return False
        return True

    def get_all_profiles(self):
        with self._conn() as conn:
            return conn.execute(
                "SELECT id, phone, profile_type, name, created_at FROM profiles ORDER BY created_at DESC"
            ).fetchall()

    def create_session(self, session_id: str, profile_id: str, expires_at_ms: int):
        with self._conn() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO sessions (session_hash, profile_id, expires_at, created_at)
                VALUES (?, ?, ?, ?)
            """, (_hash_session_id(session_id), profile_id, int(expires_at_ms), datetime.now(timezone.utc).isoformat()))
            conn.commit()

    def get_session_profile(self, session_id: str, expires_at_ms: int):
        """
        Profile bound to this session id, or None. A caller-supplied expiry later
        than the one recorded at login does not match.
        """
        with self._conn() as conn:
            row = conn.execute("""
                SELECT p.id, p.phone, p.profile_type, p.name, p.created_at
                FROM sessions s JOIN profiles p ON p.id = s.profile_id
                WHERE s.session_hash = ? AND s.expires_at >= ?
            """, (_hash_session_id(session_id), int(expires_at_ms))).fetchone()
            if row:
                return {"id": row[0], "phone": row[1], "profile_type": row[2], "name": row[3], "created_at": row[4]}
            return None

    def delete_session(self, session_id: str):
        with self._conn() as conn:
            conn.execute("DELETE FROM sessions WHERE session_hash = ?", (_hash_session_id(session_id),))
            conn.commit()


def _hash_session_id(session_id: str) -> str:
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()
