"""Session management for unlocked vaults.

A session maps a vault id to the password that unlocked it. Sessions are
owned by a SessionManager instance (one per VaultStore) and are never
persisted.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..exceptions import SessionExpiredError, VaultLockedError
from ..models.common import utc_now


@dataclass
class UnlockSession:
    """Active vault session holding the password for in-flight operations."""

    vault_id: str
    password: Optional[str]
    salt: str
    created_at: datetime = field(default_factory=utc_now)
    last_access: datetime = field(default_factory=utc_now)
    timeout_minutes: int = 0

    def is_expired(self) -> bool:
        """Check if session has timed out due to inactivity."""
        if self.timeout_minutes == 0:  # No timeout
            return False
        elapsed = utc_now() - self.last_access
        return elapsed > timedelta(minutes=self.timeout_minutes)

    def touch(self) -> None:
        """Update last access time to prevent timeout."""
        self.last_access = utc_now()

    def clear(self) -> None:
        """Drop the password reference.

        Python gives no guarantee the string is wiped from memory, but the
        session no longer keeps it alive.
        """
        self.password = None


class SessionManager:
    """
    Thread-safe table of unlock sessions keyed by vault id.

    Only unlock/lock/lock_all write to the table; every other method reads.
    """

    def __init__(self, timeout_minutes: int = 0):
        self.timeout_minutes = timeout_minutes
        self._sessions: dict[str, UnlockSession] = {}
        self._session_lock = threading.RLock()

    def unlock(self, vault_id: str, password: str, salt: str) -> UnlockSession:
        """
        Record a session, replacing any existing one for the vault.

        Args:
            vault_id: Vault identifier
            password: Password that was verified against the vault
            salt: Vault salt

        Returns:
            Active UnlockSession
        """
        session = UnlockSession(
            vault_id=vault_id,
            password=password,
            salt=salt,
            timeout_minutes=self.timeout_minutes,
        )
        with self._session_lock:
            previous = self._sessions.get(vault_id)
            self._sessions[vault_id] = session
        if previous is not None:
            previous.clear()
        return session

    def get_session(self, vault_id: str) -> Optional[UnlockSession]:
        """
        Get active session for a vault, checking expiry.

        Returns:
            UnlockSession if active and not expired, None otherwise
        """
        with self._session_lock:
            session = self._sessions.get(vault_id)

            if session is None:
                return None

            if session.is_expired():
                del self._sessions[vault_id]
                session.clear()
                return None

            session.touch()
            return session

    def require_session(self, vault_id: str) -> UnlockSession:
        """
        Get session or raise if locked/expired.

        Raises:
            VaultLockedError: If no active session
            SessionExpiredError: If session has expired
        """
        with self._session_lock:
            session = self._sessions.get(vault_id)

            if session is None:
                raise VaultLockedError(operation="require_session", entity_id=vault_id)

            if session.is_expired():
                del self._sessions[vault_id]
                session.clear()
                raise SessionExpiredError(operation="require_session", entity_id=vault_id)

            session.touch()
            return session

    def lock(self, vault_id: str) -> bool:
        """
        Lock a vault by clearing its session.

        Returns:
            True if session was cleared, False if no session existed
        """
        with self._session_lock:
            session = self._sessions.pop(vault_id, None)
        if session is None:
            return False
        session.clear()
        return True

    def lock_all(self) -> int:
        """
        Lock all vaults by clearing all sessions.

        Returns:
            Number of sessions cleared
        """
        with self._session_lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.clear()
        return len(sessions)

    def is_unlocked(self, vault_id: str) -> bool:
        return self.get_session(vault_id) is not None

    def get_password(self, vault_id: str) -> Optional[str]:
        session = self.get_session(vault_id)
        return session.password if session else None
