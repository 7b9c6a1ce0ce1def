"""Data models for null-space."""

from .note import INITIAL_VERSION, Note, Tag
from .search import SearchResult
from .vault import ARCHIVE_FORMAT_VERSION, ArchiveMetadata, Vault, generate_vault_id

__all__ = [
    "INITIAL_VERSION",
    "Note",
    "Tag",
    "SearchResult",
    "ARCHIVE_FORMAT_VERSION",
    "ArchiveMetadata",
    "Vault",
    "generate_vault_id",
]
