"""Vault registry, lifecycle and unlock sessions."""

import asyncio
import json
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Optional

from ..exceptions import (
    ConflictError,
    CryptoError,
    NotFoundError,
    NullSpaceError,
    StorageError,
    ValidationError,
    VaultLockedError,
)
from ..models import Vault, generate_vault_id
from ..models.common import next_timestamp
from ..utils.logging import get_logger
from .credentials import CredentialStore, credential_key
from .crypto import VERIFICATION_PLAINTEXT, CryptoEngine, KeyDerivation
from .layout import REGISTRY_FILE, index_path, is_single_segment, metadata_path, notes_path, vault_path
from .session import SessionManager, UnlockSession
from .storage import FileStorage

logger = get_logger(__name__)


class UnlockOutcome(Enum):
    """Result of a password check against a vault."""

    UNLOCKED = "unlocked"
    UNAUTHORIZED = "unauthorized"  # wrong password
    CORRUPTED = "corrupted"  # salt or verifier is damaged


def _require_id(vault_id: str, operation: str) -> None:
    if not isinstance(vault_id, str) or not vault_id.strip():
        raise ValidationError("Vault id must not be blank", operation=operation)
    if not is_single_segment(vault_id):
        raise ValidationError("Vault id must be a single path segment", operation=operation, entity_id=vault_id)


class VaultStore:
    """
    Owns the vault registry and the table of unlocked vaults.

    Usage:
        store = VaultStore(FileStorage(data_dir), CryptoEngine())
        vault = await store.create_vault("Personal", "", "secret")
        if await store.unlock_vault(vault, "secret"):
            password = store.get_vault_password(vault.id)
    """

    def __init__(
        self,
        storage: FileStorage,
        crypto: CryptoEngine,
        sessions: Optional[SessionManager] = None,
    ):
        self.storage = storage
        self.crypto = crypto
        self.sessions = sessions or SessionManager()
        # Serializes every read-modify-write of the registry file
        self._registry_lock = asyncio.Lock()
        # Ids held by imports that have not registered yet
        self._reserved_ids: set[str] = set()

    # ===================
    # Lifecycle
    # ===================

    async def create_vault(self, name: str, description: str, password: str) -> Vault:
        """
        Create a vault, its directory structure and its registry entry.

        Raises:
            ValidationError: If name or password is blank
            StorageError: If any directory or file operation fails; the
                vault is then not registered
        """
        if not name or not name.strip():
            raise ValidationError("Vault name must not be blank", operation="create_vault")
        if not password:
            raise ValidationError("Password must not be empty", operation="create_vault")

        salt = self.crypto.generate_salt()
        verifier = await asyncio.to_thread(self.crypto.create_verifier, password, salt)
        vault = Vault.new(name.strip(), description or "", salt, verifier)

        async with self.reserve_vault_id(vault.id):
            await self.provision_vault(vault)
            try:
                await self.register_vault(vault)
            except NullSpaceError:
                await self.discard_structure(vault.id)
                raise

        logger.info("Created vault %s (%s)", vault.id, vault.name)
        return vault

    async def provision_vault(self, vault: Vault) -> None:
        """
        Build the vault's directory structure and write vault.json.

        Anything created here is removed again if a step fails.

        Raises:
            StorageError: If a directory or file operation fails
        """
        _require_id(vault.id, "provision_vault")
        base = vault_path(vault.id)
        try:
            await self.storage.create_directory(base)
            await self.storage.create_directory(notes_path(base))
            await self.storage.create_directory(index_path(base))
            await self._save_vault_metadata(vault)
        except StorageError as e:
            await self.discard_structure(vault.id)
            raise StorageError(
                f"Failed to create vault structure: {e.message}",
                operation="create_vault",
                entity_id=vault.id,
            ) from e

    async def delete_vault(self, vault_id: str) -> None:
        """
        Lock, delete on-disk data, then unregister a vault.

        The session goes first so nothing keeps using it against a
        half-deleted vault.
        """
        _require_id(vault_id, "delete_vault")
        self.lock_vault(vault_id)
        await self.storage.delete_directory(vault_path(vault_id))
        await self._remove_vault_from_list(vault_id)
        logger.info("Deleted vault %s", vault_id)

    async def update_vault(
        self,
        vault_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Vault:
        """Rename or re-describe a vault. The salt never changes."""
        _require_id(vault_id, "update_vault")
        if name is not None and not name.strip():
            raise ValidationError("Vault name must not be blank", operation="update_vault", entity_id=vault_id)

        async with self._registry_lock:
            vaults = await self.list_vaults()
            for i, existing in enumerate(vaults):
                if existing.id == vault_id:
                    break
            else:
                raise NotFoundError("Vault not registered", operation="update_vault", entity_id=vault_id)

            updated = existing.copy(
                name=existing.name if name is None else name.strip(),
                description=existing.description if description is None else description,
                updated_at=next_timestamp(existing.updated_at),
            )
            await self._save_vault_metadata(updated)
            vaults[i] = updated
            await self._save_vaults_list(vaults)

        return updated

    async def discard_structure(self, vault_id: str) -> None:
        """Remove a vault directory that never made it into the registry."""
        try:
            await self.storage.delete_directory(vault_path(vault_id))
        except StorageError as e:
            logger.warning("Could not clean up vault directory %s: %s", vault_id, e)

    async def _save_vault_metadata(self, vault: Vault) -> None:
        await self.storage.write_file(metadata_path(vault.id), vault.to_json().encode("utf-8"))

    async def load_vault_metadata(self, vault_id: str) -> Vault:
        """Read vaults/{id}/vault.json."""
        _require_id(vault_id, "load_vault_metadata")
        data = await self.storage.read_file(metadata_path(vault_id))
        return Vault.from_json(data.decode("utf-8"))

    # ===================
    # Sessions
    # ===================

    async def _check_password(self, vault: Vault, password: str) -> UnlockOutcome:
        try:
            KeyDerivation.decode_salt(vault.salt)
        except CryptoError:
            logger.warning("Vault %s has a malformed salt", vault.id)
            return UnlockOutcome.CORRUPTED

        if vault.verifier is not None and not CryptoEngine.is_well_formed(vault.verifier):
            logger.warning("Vault %s has a malformed verifier", vault.id)
            return UnlockOutcome.CORRUPTED

        try:
            if vault.verifier is None:
                # Older metadata without a verifier: literal round-trip only
                token = await asyncio.to_thread(self.crypto.encrypt, VERIFICATION_PLAINTEXT, password, vault.salt)
            else:
                token = vault.verifier
            decrypted = await asyncio.to_thread(self.crypto.decrypt, token, password, vault.salt)
        except CryptoError:
            return UnlockOutcome.UNAUTHORIZED

        if decrypted != VERIFICATION_PLAINTEXT:
            return UnlockOutcome.CORRUPTED
        return UnlockOutcome.UNLOCKED

    async def verify_password(self, vault: Vault, password: str) -> bool:
        """Check a password without opening a session."""
        if not password:
            return False
        return await self._check_password(vault, password) is UnlockOutcome.UNLOCKED

    async def try_unlock(self, vault: Vault, password: str) -> UnlockOutcome:
        """
        Check the password and open a session on success.

        A wrong password is an outcome, not an error; the session table is
        only touched when the outcome is UNLOCKED.
        """
        if vault is None:
            raise ValidationError("Vault must be provided", operation="unlock_vault")
        _require_id(vault.id, "unlock_vault")

        if not password:
            outcome = UnlockOutcome.UNAUTHORIZED
        else:
            outcome = await self._check_password(vault, password)

        if outcome is UnlockOutcome.UNLOCKED:
            self.sessions.unlock(vault.id, password, vault.salt)
            logger.debug("Unlocked vault %s", vault.id)
        else:
            logger.info("Unlock of vault %s failed: %s", vault.id, outcome.value)
        return outcome

    async def unlock_vault(self, vault: Vault, password: str) -> bool:
        """Unlock a vault; True on success, False on a wrong password."""
        return await self.try_unlock(vault, password) is UnlockOutcome.UNLOCKED

    async def unlock_with_credentials(self, vault: Vault, store: CredentialStore) -> bool:
        """Unlock using a password previously saved in a credential store."""
        password = await store.retrieve(credential_key(vault.id))
        if password is None:
            return False
        return await self.unlock_vault(vault, password)

    async def remember_password(self, vault_id: str, store: CredentialStore) -> None:
        """Save the session password of an unlocked vault in a credential store."""
        session = self.sessions.require_session(vault_id)
        await store.store(credential_key(vault_id), session.password)

    async def forget_password(self, vault_id: str, store: CredentialStore) -> None:
        await store.delete(credential_key(vault_id))

    def lock_vault(self, vault_id: str) -> None:
        self.sessions.lock(vault_id)

    def lock_all(self) -> int:
        return self.sessions.lock_all()

    def is_vault_unlocked(self, vault_id: str) -> bool:
        return self.sessions.is_unlocked(vault_id)

    def get_vault_password(self, vault_id: str) -> Optional[str]:
        return self.sessions.get_password(vault_id)

    def get_session(self, vault_id: str) -> Optional[UnlockSession]:
        return self.sessions.get_session(vault_id)

    def require_session(self, vault: Vault) -> UnlockSession:
        """Session for an unlocked vault; raises VaultLockedError otherwise."""
        session = self.sessions.require_session(vault.id)
        if session.password is None:
            raise VaultLockedError(operation="require_session", entity_id=vault.id)
        return session

    # ===================
    # Registry
    # ===================

    async def list_vaults(self) -> list[Vault]:
        """
        Read the registry.

        A missing registry means no vaults. Malformed entries are skipped
        with a warning.

        Raises:
            StorageError: If the registry cannot be read
            ValidationError: If it is not JSON or its top level is not a list
        """
        if not await self.storage.exists(REGISTRY_FILE):
            return []

        data = await self.storage.read_file(REGISTRY_FILE)
        try:
            entries = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(
                f"Vault registry is not valid JSON: {e}", operation="list_vaults"
            ) from e

        if not isinstance(entries, list):
            raise ValidationError("Invalid vaults list format", operation="list_vaults")

        vaults = []
        for position, entry in enumerate(entries):
            try:
                vaults.append(Vault.from_dict(entry))
            except ValidationError as e:
                logger.warning("Skipping registry entry %d: %s", position, e)
        return vaults

    async def get_vault(self, vault_id: str) -> Vault:
        """Registered vault by id; raises NotFoundError if absent."""
        _require_id(vault_id, "get_vault")
        for vault in await self.list_vaults():
            if vault.id == vault_id:
                return vault
        raise NotFoundError("Vault not registered", operation="get_vault", entity_id=vault_id)

    @asynccontextmanager
    async def reserve_vault_id(self, vault_id: str) -> AsyncIterator[None]:
        """
        Hold a vault id while its directory is being built.

        Raises:
            ConflictError: If the id is registered or already reserved
        """
        _require_id(vault_id, "reserve_vault_id")
        async with self._registry_lock:
            if vault_id in self._reserved_ids or any(v.id == vault_id for v in await self.list_vaults()):
                raise ConflictError(
                    "Vault id already registered", operation="reserve_vault_id", entity_id=vault_id
                )
            self._reserved_ids.add(vault_id)
        try:
            yield
        finally:
            self._reserved_ids.discard(vault_id)

    def generate_vault_id(self) -> str:
        return generate_vault_id()

    async def register_vault(self, vault: Vault, replace: bool = False) -> None:
        """
        Add a registry entry.

        Raises:
            ConflictError: If the id is already registered and ``replace``
                is False
        """
        async with self._registry_lock:
            vaults = await self.list_vaults()
            for i, existing in enumerate(vaults):
                if existing.id == vault.id:
                    if not replace:
                        raise ConflictError(
                            "Vault id already registered", operation="register_vault", entity_id=vault.id
                        )
                    vaults[i] = vault
                    break
            else:
                vaults.append(vault)
            await self._save_vaults_list(vaults)

    async def _remove_vault_from_list(self, vault_id: str) -> None:
        async with self._registry_lock:
            vaults = await self.list_vaults()
            remaining = [vault for vault in vaults if vault.id != vault_id]
            if len(remaining) != len(vaults):
                await self._save_vaults_list(remaining)

    async def _save_vaults_list(self, vaults: list[Vault]) -> None:
        payload = json.dumps([vault.to_dict() for vault in vaults], indent=2, ensure_ascii=False)
        await self.storage.write_file(REGISTRY_FILE, payload.encode("utf-8"))
