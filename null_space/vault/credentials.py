"""Secure-credential store boundary used for biometric unlock.

The real store is an OS facility (keychain, keystore) gated by a
biometric prompt. The vault layer only needs store/retrieve/delete by
key, so that is all this interface asks for.
"""

from abc import ABC, abstractmethod
from typing import Optional

KEY_PREFIX = "vault_password_"


def credential_key(vault_id: str) -> str:
    """Storage key for a vault's password."""
    return f"{KEY_PREFIX}{vault_id}"


class CredentialStore(ABC):
    """Alternate password source for unlocking vaults."""

    @abstractmethod
    async def store(self, key: str, secret: str) -> None:
        """Store a secret under key, replacing any previous value."""

    @abstractmethod
    async def retrieve(self, key: str) -> Optional[str]:
        """Return the secret for key, or None if absent or the prompt was declined."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the secret for key; no-op if absent."""


class MemoryCredentialStore(CredentialStore):
    """In-process store for tests and headless use."""

    def __init__(self) -> None:
        self._secrets: dict[str, str] = {}

    async def store(self, key: str, secret: str) -> None:
        self._secrets[key] = secret

    async def retrieve(self, key: str) -> Optional[str]:
        return self._secrets.get(key)

    async def delete(self, key: str) -> None:
        self._secrets.pop(key, None)
