"""Party Registry for resolving contracting parties by their application id.

Backs the ``search-user`` endpoint and the in-process PartyDirectory used by
the generation service.
"""

import asyncio
import os
import sqlite3
from pathlib import Path
from typing import List, Optional

from loguru import logger

from drafting.error_handling import SessionError, ValidationError
from drafting.models import PartyInfo, PartyType
from memory.session_service import database_path_from_url


class PartyRegistry:
    """SQLite-backed directory of registered parties."""

    def __init__(self, db_path: str = "contract_drafting.db"):
        self.db_path = db_path
        self._ensure_database_exists()
        logger.info(f"PartyRegistry initialized with db_path={db_path}")

    def _ensure_database_exists(self):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS parties (
                    app_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    phone TEXT,
                    address TEXT,
                    party_type TEXT NOT NULL,
                    is_verified INTEGER NOT NULL DEFAULT 0
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_parties_email
                ON parties(email)
            """)
            conn.commit()

    @staticmethod
    def _row_to_party(row) -> PartyInfo:
        return PartyInfo(
            external_id=row[0],
            name=row[1],
            email=row[2],
            phone=row[3],
            address=row[4],
            party_type=PartyType(row[5]),
            is_verified=bool(row[6])
        )

    def register(self, party: PartyInfo) -> PartyInfo:
        """Insert or replace a party record.

        Raises:
            ValidationError: If the id, name or email is blank
        """
        if not party.external_id.strip() or not party.name.strip() or not party.email.strip():
            raise ValidationError("Party needs an app id, a name and an email")

        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT OR REPLACE INTO parties
                    (app_id, name, email, phone, address, party_type, is_verified)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    party.external_id.strip(),
                    party.name,
                    party.email,
                    party.phone,
                    party.address,
                    party.party_type.value,
                    int(party.is_verified)
                ))
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to register party {party.external_id}: {e}")
            raise SessionError(f"Party registration failed: {e}")

        logger.debug("Party registered", app_id=party.external_id)
        return party

    def lookup(self, external_id: str) -> Optional[PartyInfo]:
        external_id = (external_id or "").strip()
        if not external_id:
            return None
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT app_id, name, email, phone, address, party_type, is_verified
                    FROM parties WHERE app_id = ?
                """, (external_id,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to look up party {external_id}: {e}")
            raise SessionError(f"Party lookup failed: {e}")

        return self._row_to_party(row) if row else None

    def list_parties(self, limit: int = 100) -> List[PartyInfo]:
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT app_id, name, email, phone, address, party_type, is_verified
                    FROM parties ORDER BY name LIMIT ?
                """, (limit,))
                return [self._row_to_party(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Failed to list parties: {e}")
            raise SessionError(f"Party listing failed: {e}")


class RegistryPartyDirectory:
    """Async PartyDirectory over a PartyRegistry."""

    def __init__(self, registry: PartyRegistry):
        self.registry = registry

    async def lookup(self, external_id: str) -> Optional[PartyInfo]:
        return await asyncio.to_thread(self.registry.lookup, external_id)


def create_party_registry(db_path: Optional[str] = None) -> PartyRegistry:
    if db_path is None:
        db_path = database_path_from_url(os.getenv("DATABASE_URL", "sqlite:///./contract_drafting.db"))
    return PartyRegistry(db_path=db_path)
