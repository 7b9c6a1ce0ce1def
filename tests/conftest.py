"""Shared pytest fixtures for null-space tests."""

from pathlib import Path

import pytest

# PBKDF2 rounds used by tests; production uses 480,000
TEST_ITERATIONS = 1_000


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Application data root for one test."""
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def storage(data_dir: Path):
    from null_space.vault import FileStorage

    return FileStorage(data_dir)


@pytest.fixture
def crypto():
    """CryptoEngine with few PBKDF2 rounds so tests stay fast."""
    from null_space.vault import CryptoEngine

    return CryptoEngine(iterations=TEST_ITERATIONS)


@pytest.fixture
def search_index(storage):
    from null_space.search import SearchIndex

    return SearchIndex(storage)


@pytest.fixture
def vault_store(storage, crypto):
    from null_space.vault import VaultStore

    return VaultStore(storage, crypto)


@pytest.fixture
def note_store(storage, crypto, search_index):
    from null_space.vault import NoteStore

    return NoteStore(storage, crypto, search_index)


@pytest.fixture
def manager(vault_store, note_store):
    from null_space.vault import ImportExportManager

    return ImportExportManager(vault_store, note_store)


@pytest.fixture
def sample_note():
    """A note that has never been persisted."""
    from null_space.models import Note

    return Note.new("Meeting notes", "Discussed the quarterly roadmap.", ["work/project", "meetings"])


@pytest.fixture
def cli_env(data_dir: Path, monkeypatch) -> Path:
    """Point the CLI at a temp data root with fast key derivation."""
    monkeypatch.setenv("NULL_SPACE_DATA_DIR", str(data_dir))
    monkeypatch.setenv("NULL_SPACE_KDF_ITERATIONS", str(TEST_ITERATIONS))
    monkeypatch.delenv("NULL_SPACE_LOG_FILE", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    yield data_dir

    from null_space.utils import reset_logging

    reset_logging()
