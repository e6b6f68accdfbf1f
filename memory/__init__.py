"""Memory package for session and party storage."""

from memory.session_service import DatabaseSessionService, InMemorySessionStore, create_session_service
from memory.party_registry import PartyRegistry, RegistryPartyDirectory, create_party_registry

__all__ = [
    "DatabaseSessionService",
    "InMemorySessionStore",
    "create_session_service",
    "PartyRegistry",
    "RegistryPartyDirectory",
    "create_party_registry",
]
