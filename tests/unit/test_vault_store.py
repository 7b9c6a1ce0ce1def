"""Unit tests for VaultStore: lifecycle, unlock and registry."""

import asyncio
import json

import pytest


class TestCreateVault:
    """Tests for vault creation."""

    @pytest.mark.asyncio
    async def test_create_builds_structure(self, vault_store, data_dir):
        vault = await vault_store.create_vault("Personal", "My notes", "pw1")

        base = data_dir / "vaults" / vault.id
        assert (base / "vault.json").is_file()
        assert (base / "notes").is_dir()
        assert (base / "index").is_dir()
        assert vault.salt
        assert vault.verifier

    @pytest.mark.asyncio
    async def test_create_registers(self, vault_store):
        vault = await vault_store.create_vault("Personal", "", "pw1")

        vaults = await vault_store.list_vaults()
        assert [v.id for v in vaults] == [vault.id]
        assert vaults[0] == vault
        assert await vault_store.load_vault_metadata(vault.id) == vault

    @pytest.mark.asyncio
    async def test_ids_and_salts_unique(self, vault_store):
        first = await vault_store.create_vault("A", "", "pw")
        second = await vault_store.create_vault("B", "", "pw")

        assert first.id != second.id
        assert first.salt != second.salt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,password", [("", "pw"), ("   ", "pw"), ("Name", "")])
    async def test_validation(self, vault_store, data_dir, name, password):
        from null_space.exceptions import ValidationError

        with pytest.raises(ValidationError):
            await vault_store.create_vault(name, "", password)
        assert not (data_dir / "vaults").exists()

    @pytest.mark.asyncio
    async def test_structure_failure_not_registered(self, vault_store, storage, monkeypatch):
        """A failed directory build leaves nothing registered and nothing on disk."""
        from null_space.exceptions import StorageError

        original = storage.create_directory

        async def failing_create_directory(path):
            if path.endswith("/index"):
                raise StorageError("disk full", operation="create_directory", entity_id=path)
            await original(path)

        monkeypatch.setattr(storage, "create_directory", failing_create_directory)

        with pytest.raises(StorageError) as exc_info:
            await vault_store.create_vault("Personal", "", "pw")

        assert exc_info.value.operation == "create_vault"
        assert await vault_store.list_vaults() == []
        assert await storage.list_files("vaults") == []

    @pytest.mark.asyncio
    async def test_registry_failure_cleans_up(self, vault_store, storage, monkeypatch):
        from null_space.exceptions import StorageError

        async def failing_save(vaults):
            raise StorageError("registry write failed", operation="write_file")

        monkeypatch.setattr(vault_store, "_save_vaults_list", failing_save)

        with pytest.raises(StorageError):
            await vault_store.create_vault("Personal", "", "pw")
        assert await storage.list_files("vaults") == []


class TestUnlock:
    """Tests for password checks and sessions."""

    @pytest.mark.asyncio
    async def test_unlock_correct_password(self, vault_store):
        vault = await vault_store.create_vault("V1", "", "pw1")

        assert await vault_store.unlock_vault(vault, "pw1") is True
        assert vault_store.is_vault_unlocked(vault.id)
        assert vault_store.get_vault_password(vault.id) == "pw1"

    @pytest.mark.asyncio
    async def test_unlock_wrong_password(self, vault_store):
        vault = await vault_store.create_vault("V1", "", "pw1")

        assert await vault_store.unlock_vault(vault, "wrong") is False
        assert not vault_store.is_vault_unlocked(vault.id)
        assert vault_store.get_vault_password(vault.id) is None

    @pytest.mark.asyncio
    async def test_wrong_password_keeps_existing_session(self, vault_store):
        vault = await vault_store.create_vault("V1", "", "pw1")
        await vault_store.unlock_vault(vault, "pw1")

        assert await vault_store.unlock_vault(vault, "wrong") is False
        assert vault_store.get_vault_password(vault.id) == "pw1"

    @pytest.mark.asyncio
    async def test_unlock_idempotent(self, vault_store):
        vault = await vault_store.create_vault("V1", "", "pw1")

        assert await vault_store.unlock_vault(vault, "pw1")
        assert await vault_store.unlock_vault(vault, "pw1")
        assert vault_store.get_vault_password(vault.id) == "pw1"

    @pytest.mark.asyncio
    async def test_empty_password(self, vault_store):
        from null_space.vault import UnlockOutcome

        vault = await vault_store.create_vault("V1", "", "pw1")

        assert await vault_store.try_unlock(vault, "") is UnlockOutcome.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_outcomes(self, vault_store):
        from null_space.vault import UnlockOutcome

        vault = await vault_store.create_vault("V1", "", "pw1")

        assert await vault_store.try_unlock(vault, "pw1") is UnlockOutcome.UNLOCKED
        assert await vault_store.try_unlock(vault, "nope") is UnlockOutcome.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_corrupted_salt(self, vault_store):
        from null_space.vault import UnlockOutcome

        vault = await vault_store.create_vault("V1", "", "pw1")
        damaged = vault.copy(salt="%%%")

        assert await vault_store.try_unlock(damaged, "pw1") is UnlockOutcome.CORRUPTED
        assert not vault_store.is_vault_unlocked(vault.id)

    @pytest.mark.asyncio
    async def test_corrupted_verifier(self, vault_store):
        from null_space.vault import UnlockOutcome

        vault = await vault_store.create_vault("V1", "", "pw1")
        damaged = vault.copy(verifier="not-a-token")

        assert await vault_store.try_unlock(damaged, "pw1") is UnlockOutcome.CORRUPTED

    @pytest.mark.asyncio
    async def test_verifier_with_other_sentinel(self, vault_store, crypto):
        from null_space.vault import UnlockOutcome

        vault = await vault_store.create_vault("V1", "", "pw1")
        forged = vault.copy(verifier=crypto.encrypt("something else", "pw1", vault.salt))

        assert await vault_store.try_unlock(forged, "pw1") is UnlockOutcome.CORRUPTED

    @pytest.mark.asyncio
    async def test_legacy_vault_without_verifier(self, vault_store):
        """Without a verifier only the literal round-trip is checked."""
        vault = await vault_store.create_vault("V1", "", "pw1")
        legacy = vault.copy(verifier=None)

        assert await vault_store.unlock_vault(legacy, "pw1")

    @pytest.mark.asyncio
    async def test_verify_password_leaves_sessions_alone(self, vault_store):
        vault = await vault_store.create_vault("V1", "", "pw1")

        assert await vault_store.verify_password(vault, "pw1")
        assert not await vault_store.verify_password(vault, "wrong")
        assert not vault_store.is_vault_unlocked(vault.id)

    @pytest.mark.asyncio
    async def test_lock(self, vault_store):
        vault = await vault_store.create_vault("V1", "", "pw1")
        await vault_store.unlock_vault(vault, "pw1")
        session = vault_store.get_session(vault.id)

        vault_store.lock_vault(vault.id)
        vault_store.lock_vault(vault.id)  # no-op when already locked

        assert not vault_store.is_vault_unlocked(vault.id)
        assert session.password is None

    @pytest.mark.asyncio
    async def test_lock_all(self, vault_store):
        first = await vault_store.create_vault("A", "", "pw")
        second = await vault_store.create_vault("B", "", "pw")
        await vault_store.unlock_vault(first, "pw")
        await vault_store.unlock_vault(second, "pw")

        assert vault_store.lock_all() == 2
        assert not vault_store.is_vault_unlocked(first.id)

    @pytest.mark.asyncio
    async def test_require_session(self, vault_store):
        from null_space.exceptions import VaultLockedError

        vault = await vault_store.create_vault("V1", "", "pw1")
        with pytest.raises(VaultLockedError):
            vault_store.require_session(vault)

        await vault_store.unlock_vault(vault, "pw1")
        assert vault_store.require_session(vault).password == "pw1"

    @pytest.mark.asyncio
    async def test_session_timeout(self, storage, crypto):
        from datetime import timedelta

        from null_space.vault import SessionManager, VaultStore

        store = VaultStore(storage, crypto, SessionManager(timeout_minutes=1))
        vault = await store.create_vault("V1", "", "pw1")
        await store.unlock_vault(vault, "pw1")
        store.get_session(vault.id).last_access -= timedelta(minutes=5)

        assert not store.is_vault_unlocked(vault.id)


class TestCredentials:
    """Tests for unlocking from a credential store."""

    @pytest.mark.asyncio
    async def test_unlock_with_credentials(self, vault_store):
        from null_space.vault import MemoryCredentialStore, credential_key

        vault = await vault_store.create_vault("V1", "", "pw1")
        store = MemoryCredentialStore()

        assert await vault_store.unlock_with_credentials(vault, store) is False

        await vault_store.unlock_vault(vault, "pw1")
        await vault_store.remember_password(vault.id, store)
        assert await store.retrieve(credential_key(vault.id)) == "pw1"

        vault_store.lock_vault(vault.id)
        assert await vault_store.unlock_with_credentials(vault, store) is True
        assert vault_store.get_vault_password(vault.id) == "pw1"

        await vault_store.forget_password(vault.id, store)
        assert await store.retrieve(credential_key(vault.id)) is None

    @pytest.mark.asyncio
    async def test_stale_credential(self, vault_store):
        from null_space.vault import MemoryCredentialStore, credential_key

        vault = await vault_store.create_vault("V1", "", "pw1")
        store = MemoryCredentialStore()
        await store.store(credential_key(vault.id), "outdated")

        assert await vault_store.unlock_with_credentials(vault, store) is False

    def test_credential_key(self):
        from null_space.vault import credential_key

        assert credential_key("abc") == "vault_password_abc"


class TestRegistry:
    """Tests for listing, lookup and update."""

    @pytest.mark.asyncio
    async def test_missing_registry_is_empty(self, vault_store):
        assert await vault_store.list_vaults() == []

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped(self, vault_store, data_dir, caplog):
        vault = await vault_store.create_vault("Good", "", "pw")
        registry = data_dir / "vaults" / "vaults_list.json"
        entries = json.loads(registry.read_text())
        entries.append({"id": "broken"})
        entries.append("not even an object")
        registry.write_text(json.dumps(entries))

        vaults = await vault_store.list_vaults()

        assert [v.id for v in vaults] == [vault.id]
        assert "Skipping registry entry" in caplog.text

    @pytest.mark.asyncio
    async def test_non_list_registry(self, vault_store, data_dir):
        from null_space.exceptions import ValidationError

        (data_dir / "vaults").mkdir()
        (data_dir / "vaults" / "vaults_list.json").write_text('{"vaults": []}')

        with pytest.raises(ValidationError):
            await vault_store.list_vaults()

    @pytest.mark.asyncio
    async def test_unreadable_registry(self, vault_store, data_dir):
        from null_space.exceptions import ValidationError

        (data_dir / "vaults").mkdir()
        (data_dir / "vaults" / "vaults_list.json").write_text("[{oops")

        with pytest.raises(ValidationError):
            await vault_store.list_vaults()

    @pytest.mark.asyncio
    async def test_get_vault(self, vault_store):
        from null_space.exceptions import NotFoundError

        vault = await vault_store.create_vault("V1", "", "pw")

        assert await vault_store.get_vault(vault.id) == vault
        with pytest.raises(NotFoundError):
            await vault_store.get_vault("missing")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("vault_id", ["", "  ", "a/b", "..", "a\\b"])
    async def test_invalid_ids(self, vault_store, vault_id):
        from null_space.exceptions import ValidationError

        with pytest.raises(ValidationError):
            await vault_store.get_vault(vault_id)
        with pytest.raises(ValidationError):
            await vault_store.delete_vault(vault_id)

    @pytest.mark.asyncio
    async def test_update_vault(self, vault_store):
        vault = await vault_store.create_vault("Old", "desc", "pw")

        updated = await vault_store.update_vault(vault.id, name="New")

        assert updated.name == "New"
        assert updated.description == "desc"
        assert updated.salt == vault.salt
        assert updated.updated_at > vault.updated_at
        assert await vault_store.get_vault(vault.id) == updated
        assert await vault_store.load_vault_metadata(vault.id) == updated
        assert await vault_store.unlock_vault(updated, "pw")

    @pytest.mark.asyncio
    async def test_update_missing_vault(self, vault_store):
        from null_space.exceptions import NotFoundError, ValidationError

        with pytest.raises(NotFoundError):
            await vault_store.update_vault("missing", name="x")

        vault = await vault_store.create_vault("Old", "", "pw")
        with pytest.raises(ValidationError):
            await vault_store.update_vault(vault.id, name=" ")

    @pytest.mark.asyncio
    async def test_reserve_vault_id(self, vault_store):
        from null_space.exceptions import ConflictError

        vault = await vault_store.create_vault("V1", "", "pw")

        with pytest.raises(ConflictError):
            async with vault_store.reserve_vault_id(vault.id):
                pass

        async with vault_store.reserve_vault_id("another-id"):
            with pytest.raises(ConflictError):
                async with vault_store.reserve_vault_id("another-id"):
                    pass

        # Released on exit
        async with vault_store.reserve_vault_id("another-id"):
            pass

    @pytest.mark.asyncio
    async def test_register_is_insert_only(self, vault_store):
        from null_space.exceptions import ConflictError

        vault = await vault_store.create_vault("V1", "", "pw")

        with pytest.raises(ConflictError) as exc_info:
            await vault_store.register_vault(vault.copy(name="Clobbered"))

        assert exc_info.value.entity_id == vault.id
        assert [v.name for v in await vault_store.list_vaults()] == ["V1"]

        await vault_store.register_vault(vault.copy(name="Replaced"), replace=True)
        assert [v.name for v in await vault_store.list_vaults()] == ["Replaced"]

    @pytest.mark.asyncio
    async def test_concurrent_creates_all_registered(self, vault_store):
        """Registry read-modify-write is serialized, so no entry is lost."""
        vaults = await asyncio.gather(*(vault_store.create_vault(f"V{i}", "", "pw") for i in range(8)))

        registered = {v.id for v in await vault_store.list_vaults()}
        assert registered == {v.id for v in vaults}


class TestDeleteVault:
    """Tests for vault deletion."""

    @pytest.mark.asyncio
    async def test_delete(self, vault_store, note_store, data_dir):
        from null_space.vault import vault_path

        vault = await vault_store.create_vault("V1", "", "pw")
        keep = await vault_store.create_vault("V2", "", "pw")
        await vault_store.unlock_vault(vault, "pw")
        await note_store.create_note("t", "c", [], vault_path(vault.id), "pw", vault.salt)

        await vault_store.delete_vault(vault.id)

        assert [v.id for v in await vault_store.list_vaults()] == [keep.id]
        assert not vault_store.is_vault_unlocked(vault.id)
        assert not (data_dir / "vaults" / vault.id).exists()
        assert await note_store.load_notes(vault_path(vault.id), "pw", vault.salt) == []

    @pytest.mark.asyncio
    async def test_delete_unknown_is_quiet(self, vault_store):
        await vault_store.delete_vault("never-existed")
        assert await vault_store.list_vaults() == []
