"""Exceptions for null-space vaults, notes, search and archives."""

from typing import Any, Optional


class NullSpaceError(Exception):
    """Base exception for vault, note, search and archive operations.

    Every error carries the name of the failing operation and the id of the
    entity involved so that callers can report something useful.
    """

    default_message = "Operation failed."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        operation: Optional[str] = None,
        entity_id: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.operation = operation
        self.entity_id = entity_id
        super().__init__(self.message)

    def __str__(self) -> str:
        details = []
        if self.operation:
            details.append(f"operation={self.operation}")
        if self.entity_id:
            details.append(f"id={self.entity_id}")
        if details:
            return f"{self.message} ({', '.join(details)})"
        return self.message


class ValidationError(NullSpaceError):
    """Raised when an argument or a persisted record is invalid."""

    default_message = "Invalid input."


class NotFoundError(NullSpaceError):
    """Raised when a vault or note is absent but presence was required."""

    default_message = "Not found."


class CryptoError(NullSpaceError):
    """Raised when encryption or decryption fails (wrong key or corrupt data)."""

    default_message = "Cryptographic operation failed."


class StorageError(NullSpaceError):
    """Raised when a file-system operation fails."""

    default_message = "Storage operation failed."


class SearchIndexError(NullSpaceError):
    """Raised when a search-index operation fails."""

    default_message = "Search index operation failed."


class NoteIndexError(SearchIndexError):
    """Raised when a note was written but could not be indexed.

    The note is already persisted; ``note`` holds it so the caller can keep
    working with it and repair the index later with a rebuild.
    """

    default_message = "Note persisted but not indexed."

    def __init__(self, message: Optional[str] = None, *, note: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.note = note


class ConflictError(NullSpaceError):
    """Raised when a write collides with state that changed underneath it.

    Covers an imported vault id that is already registered and a note
    edit made from a version older than the stored one.
    """

    default_message = "Conflicting change."


class ArchiveError(NullSpaceError):
    """Base exception for archive export/import failures."""

    default_message = "Archive operation failed."


class ExportError(ArchiveError):
    """Raised when an export archive cannot be produced."""

    default_message = "Failed to export vault."


class ArchiveImportError(ArchiveError):
    """Raised when an archive cannot be read or is malformed."""

    default_message = "Failed to import vault."


class VaultLockedError(NullSpaceError):
    """Raised when an operation needs an unlock session and none is active."""

    default_message = "Vault is locked. Unlock with password first."


class SessionExpiredError(VaultLockedError):
    """Raised when a vault session has timed out."""

    default_message = "Session has expired. Please unlock again."
