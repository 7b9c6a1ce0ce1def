"""Vault and note management for null-space.

Notes are stored one encrypted file each; vaults group them under a
password and a salt.

Usage:
    storage = FileStorage(data_dir)
    crypto = CryptoEngine()
    vaults = VaultStore(storage, crypto)
    notes = NoteStore(storage, crypto, SearchIndex(storage))

    vault = await vaults.create_vault("Personal", "", password)
    if await vaults.unlock_vault(vault, password):
        note = await notes.create_note(
            "Hello", "World", ["a/b"], vault_path(vault.id), password, vault.salt
        )
"""

# Primitives
from .crypto import CryptoEngine, KeyDerivation, NoteCipher
from .storage import FileStorage
from .layout import index_path, note_path, notes_path, vault_path

# Sessions and credentials
from .session import SessionManager, UnlockSession
from .credentials import CredentialStore, MemoryCredentialStore, credential_key

# Stores
from .vault_store import UnlockOutcome, VaultStore
from .note_store import KeyedLock, NoteLoadReport, NoteStore

# Import / export
from .archive import (
    ConflictResolution,
    ImportExportManager,
    detect_conflicts,
    resolve_conflict,
)

__all__ = [
    # Primitives
    "CryptoEngine",
    "KeyDerivation",
    "NoteCipher",
    "FileStorage",
    "vault_path",
    "notes_path",
    "note_path",
    "index_path",
    # Sessions
    "SessionManager",
    "UnlockSession",
    "CredentialStore",
    "MemoryCredentialStore",
    "credential_key",
    # Stores
    "UnlockOutcome",
    "VaultStore",
    "KeyedLock",
    "NoteLoadReport",
    "NoteStore",
    # Import / export
    "ConflictResolution",
    "ImportExportManager",
    "detect_conflicts",
    "resolve_conflict",
]
