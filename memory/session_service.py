"""Session storage for contract generation sessions.

This module provides the SessionStore implementations used by the generation
service and the orchestrator: an in-memory store for tests and embedding, and
DatabaseSessionService backed by SQLite with an event log and expiry sweep.
"""

import sqlite3
import json
import os
from datetime import datetime
from typing import Optional, List, Dict, Any
from pathlib import Path
import msgspec

from drafting.models import Session, SessionStatus, utc_now
from drafting.error_handling import NotFoundError, SessionError, ValidationError
from loguru import logger

_SESSION_FIELDS = set(Session.__struct_fields__)


def apply_patch(session: Session, changes: Dict[str, Any], now: Optional[datetime] = None) -> Session:
    """Return ``session`` with ``changes`` applied.

    Top-level fields are replaced; ``session_data`` is merged key by key.
    ``updated_at`` and ``last_activity_at`` are stamped with ``now``.

    Raises:
        ValidationError: If a change names an unknown or immutable field
    """
    rejected = (set(changes) - _SESSION_FIELDS) | (set(changes) & {"id"})
    if rejected:
        raise ValidationError(f"Cannot patch session fields: {sorted(rejected)}")

    now = now or utc_now()
    data = msgspec.to_builtins(session)
    for key, value in changes.items():
        if key == "session_data":
            merged = dict(data.get("session_data") or {})
            merged.update(msgspec.to_builtins(value or {}))
            data["session_data"] = merged
        else:
            data[key] = msgspec.to_builtins(value)
    data["updated_at"] = now.isoformat()
    data["last_activity_at"] = now.isoformat()

    try:
        return msgspec.convert(data, type=Session)
    except msgspec.ValidationError as e:
        raise ValidationError(f"Invalid session patch: {e}") from e


class InMemorySessionStore:
    """Process-local SessionStore. Returned sessions are independent copies."""

    def __init__(self):
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self.events: List[Dict[str, Any]] = []

    def get(self, session_id: str) -> Optional[Session]:
        raw = self._sessions.get(session_id)
        return msgspec.convert(raw, type=Session) if raw is not None else None

    def put(self, session: Session) -> None:
        self._sessions[session.id] = msgspec.to_builtins(session)

    def patch(self, session_id: str, changes: Dict[str, Any]) -> Session:
        session = self.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        updated = apply_patch(session, changes)
        self.put(updated)
        return updated

    def list_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        sessions = [self.get(session_id) for session_id in self._sessions]
        return [s for s in sessions if user_id is None or s.user_id == user_id]

    def log_event(self, session_id: str, event_type: str, event_data: Dict[str, Any]) -> None:
        self.events.append({
            "session_id": session_id,
            "event_type": event_type,
            "event_data": event_data,
            "timestamp": utc_now().isoformat()
        })


class DatabaseSessionService:
    """Session service using SQLite for persistent storage.

    Manages contract generation sessions with support for:
    - Snapshot retrieval, replacement and partial updates
    - Event logging for audit trails
    - Expiry of sessions past their ``expires_at``
    """

    def __init__(self, db_path: str = "contract_drafting.db"):
        """Initialize the database session service.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._ensure_database_exists()
        logger.info(f"DatabaseSessionService initialized with db_path={db_path}")

    def _ensure_database_exists(self):
        """Create database and tables if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    user_id TEXT,
                    current_step INTEGER NOT NULL DEFAULT 1,
                    session_status TEXT NOT NULL,
                    completion_percentage REAL NOT NULL DEFAULT 0,
                    selected_template_id TEXT,
                    contract_type TEXT,
                    initial_user_prompt TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    last_activity_at TEXT,
                    expires_at TEXT,
                    session_data TEXT NOT NULL DEFAULT '{}'
                )
            """)

            # Events table for audit trail
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    event_data TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES sessions(session_id)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_sessions_user_id
                ON sessions(user_id)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_sessions_status_expires
                ON sessions(session_status, expires_at)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_session_id
                ON events(session_id)
            """)

            conn.commit()
            logger.debug("Database schema initialized successfully")

    @staticmethod
    def _row_to_session(row) -> Session:
        data = {
            "id": row[0],
            "user_id": row[1],
            "current_step": row[2],
            "session_status": row[3],
            "completion_percentage": row[4],
            "selected_template_id": row[5],
            "contract_type": row[6],
            "initial_user_prompt": row[7],
            "created_at": row[8],
            "updated_at": row[9],
            "last_activity_at": row[10],
            "expires_at": row[11],
            "session_data": msgspec.json.decode(row[12]) if row[12] else {},
        }
        return msgspec.convert(data, type=Session)

    def get(self, session_id: str) -> Optional[Session]:
        """Retrieve a session snapshot by ID.

        Returns:
            Session or None if not found
        """
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT session_id, user_id, current_step, session_status,
                           completion_percentage, selected_template_id, contract_type,
                           initial_user_prompt, created_at, updated_at, last_activity_at,
                           expires_at, session_data
                    FROM sessions WHERE session_id = ?
                """, (session_id,))

                row = cursor.fetchone()
                if not row:
                    logger.warning(f"Session not found: {session_id}")
                    return None

                session = self._row_to_session(row)
                logger.debug(f"Session retrieved: {session_id}")
                return session

        except msgspec.ValidationError as e:
            logger.error(f"Stored session {session_id} is not decodable: {e}")
            raise SessionError(f"Session retrieval failed: {e}")
        except sqlite3.Error as e:
            logger.error(f"Failed to retrieve session {session_id}: {e}")
            raise SessionError(f"Session retrieval failed: {e}")

    def put(self, session: Session) -> None:
        """Insert or replace a full session snapshot.

        Raises:
            SessionError: If the write fails
        """
        data = msgspec.to_builtins(session)
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT OR REPLACE INTO sessions (
                        session_id, user_id, current_step, session_status,
                        completion_percentage, selected_template_id, contract_type,
                        initial_user_prompt, created_at, updated_at, last_activity_at,
                        expires_at, session_data
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    data["id"],
                    data.get("user_id"),
                    data["current_step"],
                    data["session_status"],
                    data["completion_percentage"],
                    data.get("selected_template_id"),
                    data.get("contract_type"),
                    data.get("initial_user_prompt"),
                    data.get("created_at"),
                    data.get("updated_at"),
                    data.get("last_activity_at"),
                    data.get("expires_at"),
                    msgspec.json.encode(data.get("session_data") or {}).decode()
                ))
                conn.commit()

            self._log_event(session.id, "session_saved", {
                "current_step": session.current_step,
                "session_status": data["session_status"]
            })
            logger.debug(f"Session saved: {session.id}")

        except sqlite3.Error as e:
            logger.error(f"Failed to save session {session.id}: {e}")
            raise SessionError(f"Session save failed: {e}")

    def patch(self, session_id: str, changes: Dict[str, Any]) -> Session:
        """Apply a partial update and return the stored result.

        Raises:
            NotFoundError: If the session does not exist
            ValidationError: If the change set is invalid
            SessionError: If the write fails
        """
        session = self.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")

        updated = apply_patch(session, changes)
        self.put(updated)
        self._log_event(session_id, "session_patched", {"fields": sorted(changes)})
        return updated

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and all associated data.

        Returns:
            True if session was deleted, False if not found
        """
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM events WHERE session_id = ?", (session_id,))
                cursor.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
                deleted = cursor.rowcount > 0
                conn.commit()

            if deleted:
                logger.info(f"Session deleted: {session_id}")
            else:
                logger.warning(f"Session not found for deletion: {session_id}")

            return deleted

        except sqlite3.Error as e:
            logger.error(f"Failed to delete session {session_id}: {e}")
            raise SessionError(f"Session deletion failed: {e}")

    def list_sessions(self, user_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """List session summaries, optionally filtered by user, newest first."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()

                if user_id:
                    cursor.execute("""
                        SELECT session_id, user_id, current_step, session_status, contract_type, updated_at
                        FROM sessions
                        WHERE user_id = ?
                        ORDER BY updated_at DESC
                        LIMIT ?
                    """, (user_id, limit))
                else:
                    cursor.execute("""
                        SELECT session_id, user_id, current_step, session_status, contract_type, updated_at
                        FROM sessions
                        ORDER BY updated_at DESC
                        LIMIT ?
                    """, (limit,))

                sessions = [
                    {
                        "session_id": row[0],
                        "user_id": row[1],
                        "current_step": row[2],
                        "session_status": row[3],
                        "contract_type": row[4],
                        "updated_at": row[5],
                    }
                    for row in cursor.fetchall()
                ]

                logger.debug(f"Listed {len(sessions)} sessions")
                return sessions

        except sqlite3.Error as e:
            logger.error(f"Failed to list sessions: {e}")
            raise SessionError(f"Session listing failed: {e}")

    def expire_sessions(self, now: Optional[datetime] = None) -> int:
        """Mark unfinished sessions past ``expires_at`` as abandoned.

        Returns:
            Number of sessions marked abandoned
        """
        now = now or utc_now()
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT session_id FROM sessions
                    WHERE expires_at IS NOT NULL AND expires_at <= ?
                      AND session_status NOT IN (?, ?)
                """, (now.isoformat(), SessionStatus.COMPLETED.value, SessionStatus.ABANDONED.value))
                session_ids = [row[0] for row in cursor.fetchall()]

                if not session_ids:
                    logger.debug("No expired sessions")
                    return 0

                placeholders = ','.join('?' * len(session_ids))
                cursor.execute(
                    f"UPDATE sessions SET session_status = ?, updated_at = ? WHERE session_id IN ({placeholders})",
                    [SessionStatus.ABANDONED.value, now.isoformat(), *session_ids]
                )
                conn.commit()

            for session_id in session_ids:
                self._log_event(session_id, "session_abandoned", {"reason": "expired"})
            logger.info(f"Marked {len(session_ids)} expired sessions abandoned")
            return len(session_ids)

        except sqlite3.Error as e:
            logger.error(f"Failed to expire sessions: {e}")
            raise SessionError(f"Session expiry failed: {e}")

    def _log_event(self, session_id: str, event_type: str, event_data: Dict[str, Any]) -> None:
        """Log an event for audit trail. Failures are logged, not raised."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT INTO events (session_id, event_type, event_data, timestamp)
                    VALUES (?, ?, ?, ?)
                """, (
                    session_id,
                    event_type,
                    json.dumps(event_data),
                    utc_now().isoformat()
                ))
                conn.commit()

        except sqlite3.Error as e:
            logger.warning(f"Failed to log event for session {session_id}: {e}")

    def log_event(self, session_id: str, event_type: str, event_data: Dict[str, Any]) -> None:
        self._log_event(session_id, event_type, event_data)

    def get_events(self, session_id: str) -> List[Dict[str, Any]]:
        """Retrieve all events for a session, oldest first."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT event_type, event_data, timestamp
                    FROM events
                    WHERE session_id = ?
                    ORDER BY id ASC
                """, (session_id,))

                return [
                    {
                        "event_type": row[0],
                        "event_data": json.loads(row[1]),
                        "timestamp": row[2]
                    }
                    for row in cursor.fetchall()
                ]

        except sqlite3.Error as e:
            logger.error(f"Failed to get events for session {session_id}: {e}")
            raise SessionError(f"Event retrieval failed: {e}")


def database_path_from_url(url: str) -> str:
    """Extract the file path from a ``sqlite:///`` URL."""
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):]
    return url


def create_session_service(db_path: Optional[str] = None) -> DatabaseSessionService:
    """Factory function to create a session service from ``DATABASE_URL``."""
    if db_path is None:
        db_path = database_path_from_url(os.getenv("DATABASE_URL", "sqlite:///./contract_drafting.db"))
    return DatabaseSessionService(db_path=db_path)
