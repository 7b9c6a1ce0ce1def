"""null-space - Encrypted, tagged notes in password-protected vaults."""

__version__ = "0.1.0"

from .models import Note, SearchResult, Tag, Vault

__all__ = [
    "__version__",
    "Note",
    "SearchResult",
    "Tag",
    "Vault",
]
