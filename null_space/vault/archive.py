"""Vault export and import.

An archive is a deflated ZIP file:

    metadata.json          plaintext ArchiveMetadata (vault, note_count, export_date, format_version)
    notes/{note_id}.json   Fernet token of the note JSON under (password, source vault salt)

The source vault's verifier travels inside metadata.json, so import can
reject a wrong password before a single note is decrypted.
"""

import asyncio
import uuid
import zipfile
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Union

from ..exceptions import (
    ArchiveImportError,
    ConflictError,
    CryptoError,
    ExportError,
    NullSpaceError,
    SearchIndexError,
    ValidationError,
)
from ..models import ARCHIVE_FORMAT_VERSION, ArchiveMetadata, Note, Vault
from ..models.common import utc_now
from ..utils.logging import get_logger
from .layout import NOTE_SUFFIX, index_path, is_single_segment, vault_path
from .note_store import NoteStore
from .vault_store import VaultStore

logger = get_logger(__name__)

METADATA_ENTRY = "metadata.json"
NOTES_PREFIX = "notes/"

# Name marker for a vault imported under a fresh id
IMPORTED_SUFFIX = " (imported)"
# Title marker for the imported side of a KEEP_BOTH note conflict
IMPORTED_COPY_SUFFIX = " (Imported Copy)"


class ConflictResolution(Enum):
    """What to do when an imported note has the same id as an existing one."""

    OVERWRITE = "overwrite"
    KEEP_BOTH = "keep_both"
    SKIP = "skip"


def detect_conflicts(existing: list[Note], imported: list[Note]) -> list[tuple[Note, Note]]:
    """
    Pair up notes that share an id but differ in version or updated_at.

    Returns:
        (existing, imported) pairs in the order of ``imported``
    """
    by_id = {note.id: note for note in existing}
    conflicts = []
    for note in imported:
        current = by_id.get(note.id)
        if current is None:
            continue
        if current.version != note.version or current.updated_at != note.updated_at:
            conflicts.append((current, note))
    return conflicts


def resolve_conflict(existing: Note, imported: Note, resolution: ConflictResolution) -> list[Note]:
    """Notes to keep for one conflict."""
    if resolution is ConflictResolution.OVERWRITE:
        return [imported]
    if resolution is ConflictResolution.KEEP_BOTH:
        copy = replace(
            imported,
            id=str(uuid.uuid4()),
            title=imported.title + IMPORTED_COPY_SUFFIX,
            tags=list(imported.tags),
        )
        return [existing, copy]
    return [existing]


def _note_entry(note_id: str) -> str:
    return f"{NOTES_PREFIX}{note_id}{NOTE_SUFFIX}"


def _write_archive(output: Path, metadata: ArchiveMetadata, tokens: dict[str, str]) -> None:
    output.parent.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(METADATA_ENTRY, metadata.to_json())
            for note_id, token in tokens.items():
                zf.writestr(_note_entry(note_id), token)
    except BaseException:
        output.unlink(missing_ok=True)
        raise


def _read_archive(archive: Path) -> tuple[str, dict[str, str]]:
    """Raw metadata JSON plus {entry name: token} for every note entry."""
    if not archive.is_file():
        raise ArchiveImportError(f"Archive not found: {archive}", operation="import_vault")
    if not zipfile.is_zipfile(archive):
        raise ArchiveImportError(f"Not a valid ZIP file: {archive}", operation="import_vault")

    with zipfile.ZipFile(archive, "r") as zf:
        try:
            metadata_json = zf.read(METADATA_ENTRY).decode("utf-8")
        except KeyError as e:
            raise ArchiveImportError("Archive has no metadata.json", operation="import_vault") from e

        tokens = {}
        for member in zf.infolist():
            name = member.filename
            if member.is_dir() or not name.startswith(NOTES_PREFIX) or not name.endswith(NOTE_SUFFIX):
                continue
            tokens[name] = zf.read(member).decode("ascii")
    return metadata_json, tokens


class ImportExportManager:
    """
    Moves whole vaults across the archive boundary.

    Usage:
        manager = ImportExportManager(vault_store, note_store)
        await manager.export_vault(vault, notes, "backup.zip", password)
        imported, notes = await manager.import_vault("backup.zip", password)
    """

    def __init__(self, vault_store: VaultStore, note_store: NoteStore):
        self.vault_store = vault_store
        self.note_store = note_store
        self.crypto = vault_store.crypto

    # ===================
    # Export
    # ===================

    async def export_vault(
        self,
        vault: Vault,
        notes: list[Note],
        output_path: Union[str, Path],
        password: str,
    ) -> Path:
        """
        Write a vault and the given notes to an archive.

        Returns:
            Path of the written archive

        Raises:
            ValidationError: If the password is empty
            ExportError: If the password does not open the vault or the
                archive cannot be written
        """
        if not password:
            raise ValidationError("Password must not be empty", operation="export_vault")
        output = Path(output_path).expanduser()

        if not await self.vault_store.verify_password(vault, password):
            raise ExportError("Password does not unlock this vault", operation="export_vault", entity_id=vault.id)

        try:
            cipher = await asyncio.to_thread(self.crypto.cipher, password, vault.salt)
            tokens = {}
            for note in notes:
                tokens[note.id] = await asyncio.to_thread(cipher.encrypt, note.to_json())
        except CryptoError as e:
            raise ExportError(f"Failed to encrypt notes: {e.message}", operation="export_vault", entity_id=vault.id) from e

        metadata = ArchiveMetadata(vault=vault, note_count=len(tokens))
        try:
            await asyncio.to_thread(_write_archive, output, metadata, tokens)
        except (OSError, zipfile.BadZipFile) as e:
            raise ExportError(f"Failed to write archive: {e}", operation="export_vault", entity_id=vault.id) from e

        logger.info("Exported vault %s with %d notes to %s", vault.id, len(tokens), output)
        return output

    # ===================
    # Import
    # ===================

    async def read_archive(self, input_path: Union[str, Path], password: str) -> tuple[Vault, list[Note]]:
        """
        Decrypt an archive without touching the registry.

        Raises:
            ArchiveImportError: If the file is missing, not a ZIP or malformed
            CryptoError: If the password does not open the archive
        """
        if not password:
            raise ValidationError("Password must not be empty", operation="import_vault")
        archive = Path(input_path).expanduser()

        try:
            metadata_json, tokens = await asyncio.to_thread(_read_archive, archive)
        except (OSError, zipfile.BadZipFile, UnicodeDecodeError) as e:
            raise ArchiveImportError(f"Failed to read archive: {e}", operation="import_vault") from e

        try:
            metadata = ArchiveMetadata.from_json(metadata_json)
        except ValidationError as e:
            raise ArchiveImportError(f"Invalid archive metadata: {e.message}", operation="import_vault") from e
        if metadata.format_version.split(".")[0] != ARCHIVE_FORMAT_VERSION.split(".")[0]:
            raise ArchiveImportError(
                f"Unsupported archive format {metadata.format_version}", operation="import_vault"
            )

        source = metadata.vault
        if not await self.vault_store.verify_password(source, password):
            raise CryptoError("Wrong password for archive", operation="import_vault", entity_id=source.id)

        cipher = await asyncio.to_thread(self.crypto.cipher, password, source.salt)
        notes = []
        for name, token in tokens.items():
            plaintext = await asyncio.to_thread(cipher.decrypt, token)
            try:
                note = Note.from_json(plaintext)
            except ValidationError as e:
                raise ArchiveImportError(f"Invalid note {name}: {e.message}", operation="import_vault") from e
            if not is_single_segment(note.id):
                raise ArchiveImportError("Invalid note id in archive", operation="import_vault", entity_id=note.id)
            notes.append(note)

        if len(notes) != metadata.note_count:
            logger.warning("Archive declares %d notes but holds %d", metadata.note_count, len(notes))
        return source, notes

    async def _as_renamed(self, candidate: Vault, password: str) -> Vault:
        """Fresh id, salt and verifier for a vault whose id is taken."""
        salt = self.crypto.generate_salt()
        verifier = await asyncio.to_thread(self.crypto.create_verifier, password, salt)
        return candidate.copy(
            id=self.vault_store.generate_vault_id(),
            name=candidate.name + IMPORTED_SUFFIX,
            salt=salt,
            verifier=verifier,
            updated_at=utc_now(),
        )

    async def _install(self, vault: Vault, notes: list[Note], password: str) -> None:
        """
        Build, fill and register a vault under a reserved id.

        Raises:
            ConflictError: If the id is taken; nothing was written
        """
        async with self.vault_store.reserve_vault_id(vault.id):
            await self.vault_store.provision_vault(vault)
            base = vault_path(vault.id)
            try:
                for note in notes:
                    await self.note_store.save_note(note, base, password, vault.salt)
                await self.vault_store.register_vault(vault)
            except NullSpaceError:
                await self.vault_store.discard_structure(vault.id)
                raise

    async def import_vault(self, input_path: Union[str, Path], password: str) -> tuple[Vault, list[Note]]:
        """
        Import an archive as a new registered vault.

        If the archived vault id is already registered, or another import
        holds it, the vault gets a fresh id, salt and verifier, and its name
        is marked as imported. Notes are written under the destination
        vault's salt.

        Returns:
            (imported vault, its notes)

        Raises:
            ArchiveImportError: If the archive cannot be read
            CryptoError: If the password does not open the archive
            StorageError: If the vault could not be written; nothing is
                registered in that case
        """
        candidate, notes = await self.read_archive(input_path, password)

        vault = candidate
        if vault.verifier is None:
            verifier = await asyncio.to_thread(self.crypto.create_verifier, password, vault.salt)
            vault = vault.copy(verifier=verifier)

        try:
            await self._install(vault, notes, password)
        except ConflictError:
            vault = await self._as_renamed(candidate, password)
            logger.info("Vault %s already registered; importing as %s", candidate.id, vault.id)
            await self._install(vault, notes, password)

        try:
            await self.note_store.search_index.rebuild_index(index_path(vault_path(vault.id)), notes)
        except SearchIndexError as e:
            logger.warning("Imported vault %s but could not build its index: %s", vault.id, e)

        logger.info("Imported vault %s (%s) with %d notes", vault.id, vault.name, len(notes))
        return vault, notes

    async def merge_archive(
        self,
        vault: Vault,
        input_path: Union[str, Path],
        password: str,
        resolution: ConflictResolution = ConflictResolution.KEEP_BOTH,
    ) -> list[Note]:
        """
        Merge an archive's notes into an existing, unlocked vault.

        ``password`` opens the archive; notes are written with the
        destination vault's session key material.

        Returns:
            Notes that were written
        """
        session = self.vault_store.require_session(vault)
        _, imported = await self.read_archive(input_path, password)

        base = vault_path(vault.id)
        existing = await self.note_store.load_notes(base, session.password, vault.salt)
        existing_ids = {note.id for note in existing}
        conflicts = {new.id: current for current, new in detect_conflicts(existing, imported)}

        written = []
        for note in imported:
            if note.id in conflicts:
                current = conflicts[note.id]
                to_write = [n for n in resolve_conflict(current, note, resolution) if n is not current]
            elif note.id in existing_ids:
                # Same id, version and timestamp
                continue
            else:
                to_write = [note]

            for item in to_write:
                await self.note_store.save_note(item, base, session.password, vault.salt)
                written.append(item)

        if written:
            try:
                await self.note_store.rebuild_index(base, session.password, vault.salt)
            except SearchIndexError as e:
                logger.warning("Merged into vault %s but could not rebuild its index: %s", vault.id, e)

        logger.info("Merged %d notes into vault %s (%s)", len(written), vault.id, resolution.value)
        return written
