"""Vault layout and path helpers.

All paths are relative to the application data root and use forward
slashes:

    vaults/vaults_list.json              registry (JSON list of vault metadata)
    vaults/{vault_id}/vault.json         single vault metadata
    vaults/{vault_id}/notes/{id}.json    encrypted notes
    vaults/{vault_id}/index/             search index, owned by SearchIndex
"""

VAULTS_DIR = "vaults"
REGISTRY_FILE = f"{VAULTS_DIR}/vaults_list.json"
METADATA_FILE = "vault.json"
NOTES_DIR = "notes"
INDEX_DIR = "index"
NOTE_SUFFIX = ".json"


def vault_path(vault_id: str) -> str:
    """Directory of a vault, e.g. "vaults/<id>"."""
    return f"{VAULTS_DIR}/{vault_id}"


def metadata_path(vault_id: str) -> str:
    return f"{vault_path(vault_id)}/{METADATA_FILE}"


def notes_path(vault_dir: str) -> str:
    """Notes directory for a vault directory."""
    return f"{vault_dir}/{NOTES_DIR}"


def note_path(vault_dir: str, note_id: str) -> str:
    return f"{notes_path(vault_dir)}/{note_id}{NOTE_SUFFIX}"


def index_path(vault_dir: str) -> str:
    """Search index directory for a vault directory."""
    return f"{vault_dir}/{INDEX_DIR}"


def is_single_segment(value: str) -> bool:
    """True if value can be used as one path component."""
    return bool(value) and "/" not in value and "\\" not in value and value not in (".", "..")
