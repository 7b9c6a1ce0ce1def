"""Encrypted note persistence within a vault.

Every note is one Fernet token at ``{vault_path}/notes/{note_id}.json``.
NoteStore never keeps password material: key material comes in with
each call and the derived cipher is dropped when the call returns.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from ..exceptions import (
    ConflictError,
    CryptoError,
    NoteIndexError,
    NotFoundError,
    SearchIndexError,
    StorageError,
    ValidationError,
)
from ..models import Note, SearchResult
from ..search import SearchIndex
from ..utils.logging import get_logger
from .crypto import CryptoEngine, NoteCipher
from .layout import NOTE_SUFFIX, index_path, is_single_segment, note_path, notes_path
from .storage import FileStorage

logger = get_logger(__name__)


@dataclass
class NoteLoadReport:
    """Outcome of a bulk load: the notes that loaded and why the others did not."""

    notes: list[Note] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._waiters: defaultdict[tuple[str, str], int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, vault_path: str, note_id: str) -> AsyncIterator[None]:
        key = (vault_path, note_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def _require_text(value: str, what: str, operation: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{what} must not be blank", operation=operation)


def _require_note_id(note_id: str, operation: str) -> None:
    _require_text(note_id, "Note id", operation)
    if not is_single_segment(note_id):
        raise ValidationError("Note id must be a single path segment", operation=operation, entity_id=note_id)


def _require_key_material(password: str, salt: str, operation: str) -> None:
    if not password:
        raise ValidationError("Password must not be empty", operation=operation)
    _require_text(salt, "Salt", operation)


class NoteStore:
    """
    Creates, updates, loads and deletes encrypted notes.

    Writes to the same (vault, note id) are serialized; different notes
    proceed in parallel.

    Usage:
        notes = NoteStore(storage, crypto, SearchIndex(storage))
        note = await notes.create_note("Title", "Body", ["work"], "vaults/v1", password, salt)
        same = await notes.load_note_by_id(note.id, "vaults/v1", password, salt)
    """

    def __init__(self, storage: FileStorage, crypto: CryptoEngine, search_index: SearchIndex):
        self.storage = storage
        self.crypto = crypto
        self.search_index = search_index
        self._note_locks = KeyedLock()

    async def _cipher(self, password: str, salt: str) -> NoteCipher:
        return await asyncio.to_thread(self.crypto.cipher, password, salt)

    async def _write_note(self, note: Note, vault_path: str, password: str, salt: str) -> None:
        cipher = await self._cipher(password, salt)
        token = await asyncio.to_thread(cipher.encrypt, note.to_json())
        await self.storage.write_file(note_path(vault_path, note.id), token.encode("ascii"))

    async def _index_after_write(self, note: Note, vault_path: str, operation: str) -> None:
        try:
            await self.index_note(note, index_path(vault_path))
        except (SearchIndexError, StorageError) as e:
            raise NoteIndexError(
                f"Note saved but not indexed: {e.message}",
                note=note,
                operation=operation,
                entity_id=note.id,
            ) from e

    # ===================
    # Writes
    # ===================

    async def create_note(
        self,
        title: str,
        content: str,
        tags: Optional[list[str]],
        vault_path: str,
        password: str,
        salt: str,
    ) -> Note:
        """
        Create, encrypt and persist a new note, then index it.

        Raises:
            ValidationError: On a blank vault path or missing key material
            CryptoError / StorageError: If the note could not be written
            NoteIndexError: If the note was written but indexing failed;
                the persisted note is on the exception
        """
        _require_text(vault_path, "Vault path", "create_note")
        _require_key_material(password, salt, "create_note")

        note = Note.new(title or "", content or "", tags)
        async with self._note_locks.hold(vault_path, note.id):
            await self._write_note(note, vault_path, password, salt)
            await self._index_after_write(note, vault_path, "create_note")

        logger.debug("Created note %s in %s", note.id, vault_path)
        return note

    async def update_note(self, note: Note, vault_path: str, password: str, salt: str) -> Note:
        """
        Persist an edited note as its next version and re-index it.

        The note keeps its id; version goes up by one and updated_at moves
        forward. ``note`` must carry the version currently stored, so an
        edit made from an older copy cannot overwrite a newer one.

        Raises:
            NotFoundError: If the note has never been saved in this vault
            ConflictError: If the stored note has moved past ``note.version``
            NoteIndexError: If the note was written but indexing failed
        """
        if note is None:
            raise ValidationError("Note must be provided", operation="update_note")
        _require_note_id(note.id, "update_note")
        _require_text(vault_path, "Vault path", "update_note")
        _require_key_material(password, salt, "update_note")

        async with self._note_locks.hold(vault_path, note.id):
            stored = await self.load_note_by_id(note.id, vault_path, password, salt)
            if stored is None:
                raise NotFoundError("Note not found", operation="update_note", entity_id=note.id)
            if stored.version != note.version:
                raise ConflictError(
                    f"Note is at version {stored.version}, edit was made from version {note.version}",
                    operation="update_note",
                    entity_id=note.id,
                )
            updated = note.next_version()
            await self._write_note(updated, vault_path, password, salt)
            await self._index_after_write(updated, vault_path, "update_note")

        logger.debug("Updated note %s to version %d", updated.id, updated.version)
        return updated

    async def save_note(self, note: Note, vault_path: str, password: str, salt: str) -> None:
        """Encrypt and write a note as-is, without touching version or index."""
        _require_note_id(note.id, "save_note")
        _require_text(vault_path, "Vault path", "save_note")
        _require_key_material(password, salt, "save_note")
        async with self._note_locks.hold(vault_path, note.id):
            await self._write_note(note, vault_path, password, salt)

    async def delete_note(self, note_id: str, vault_path: str) -> None:
        """
        Delete a note file. No key material is needed.

        Removal from the search index is attempted afterwards; failing
        that only logs a warning, and a rebuild will catch it.

        Raises:
            NotFoundError: If the note file does not exist
        """
        _require_note_id(note_id, "delete_note")
        _require_text(vault_path, "Vault path", "delete_note")

        async with self._note_locks.hold(vault_path, note_id):
            await self.storage.delete_file(note_path(vault_path, note_id))

        try:
            await self.search_index.remove_from_index(index_path(vault_path), note_id)
        except SearchIndexError as e:
            logger.warning("Note %s deleted but still indexed: %s", note_id, e)
        logger.debug("Deleted note %s from %s", note_id, vault_path)

    # ===================
    # Reads
    # ===================

    async def load_notes_report(self, vault_path: str, password: str, salt: str) -> NoteLoadReport:
        """
        Decrypt every note in a vault, collecting per-file failures.

        A file that cannot be decrypted or parsed is recorded in
        ``failures`` and skipped; the rest still load.
        """
        _require_text(vault_path, "Vault path", "load_notes")
        _require_key_material(password, salt, "load_notes")

        report = NoteLoadReport()
        paths = [p for p in await self.storage.list_files(notes_path(vault_path)) if p.endswith(NOTE_SUFFIX)]
        if not paths:
            return report

        cipher = await self._cipher(password, salt)
        for path in paths:
            try:
                data = await self.storage.read_file(path)
                plaintext = await asyncio.to_thread(cipher.decrypt, data.decode("ascii"))
                report.notes.append(Note.from_json(plaintext))
            except (CryptoError, ValidationError, NotFoundError) as e:
                report.failures.append((path, str(e)))
                logger.warning("Skipping note file %s: %s", path, e)
            except UnicodeDecodeError as e:
                report.failures.append((path, f"Not a note token: {e}"))
                logger.warning("Skipping note file %s: not a note token", path)

        return report

    async def load_notes(self, vault_path: str, password: str, salt: str) -> list[Note]:
        """All notes that could be decrypted; unreadable ones are skipped."""
        report = await self.load_notes_report(vault_path, password, salt)
        return report.notes

    async def load_note_by_id(self, note_id: str, vault_path: str, password: str, salt: str) -> Optional[Note]:
        """
        Load one note.

        Returns:
            The note, or None if no file exists for the id

        Raises:
            CryptoError: On a wrong key or a corrupt file
            ValidationError: If the decrypted payload is not a valid note
        """
        _require_note_id(note_id, "load_note_by_id")
        _require_text(vault_path, "Vault path", "load_note_by_id")
        _require_key_material(password, salt, "load_note_by_id")

        path = note_path(vault_path, note_id)
        if not await self.storage.exists(path):
            return None

        data = await self.storage.read_file(path)
        try:
            token = data.decode("ascii")
        except UnicodeDecodeError as e:
            raise CryptoError("Note file is not a valid token", operation="load_note_by_id", entity_id=note_id) from e
        cipher = await self._cipher(password, salt)
        plaintext = await asyncio.to_thread(cipher.decrypt, token)
        return Note.from_json(plaintext)

    # ===================
    # Search
    # ===================

    async def index_note(self, note: Note, index_dir: str) -> None:
        """Add or replace a note in the search index, creating the index directory first."""
        _require_text(index_dir, "Index path", "index_note")
        await self.storage.create_directory(index_dir)
        await self.search_index.index_note(index_dir, note)

    async def rebuild_index(self, vault_path: str, password: str, salt: str) -> int:
        """
        Re-index a vault from its notes on disk.

        This is the repair path after a NoteIndexError or a failed
        removal. Returns the number of notes indexed.
        """
        report = await self.load_notes_report(vault_path, password, salt)
        if report.failures:
            logger.warning("Rebuilding index for %s without %d unreadable notes", vault_path, len(report.failures))
        index_dir = index_path(vault_path)
        await self.storage.create_directory(index_dir)
        return await self.search_index.rebuild_index(index_dir, report.notes)

    async def search(self, vault_path: str, query: str, limit: int = 20) -> list[SearchResult]:
        _require_text(vault_path, "Vault path", "search")
        return await self.search_index.search(index_path(vault_path), query, limit)
