"""Vault and archive metadata models."""

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from ..exceptions import ValidationError
from .common import (
    format_timestamp,
    parse_timestamp,
    require_field,
    require_mapping,
    utc_now,
)

# Archive layout version written by export
ARCHIVE_FORMAT_VERSION = "1.0"


def generate_vault_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Vault:
    """
    A password-protected container of notes.

    The salt is fixed at creation; every note in the vault is encrypted
    with a key derived from (password, salt). The verifier is a sentinel
    encrypted under the same key and is what unlock checks a password
    against. Neither value is secret.
    """

    id: str
    name: str
    description: str = ""
    salt: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    verifier: Optional[str] = None

    @classmethod
    def new(cls, name: str, description: str, salt: str, verifier: Optional[str] = None) -> "Vault":
        now = utc_now()
        return cls(
            id=generate_vault_id(),
            name=name,
            description=description,
            salt=salt,
            created_at=now,
            updated_at=now,
            verifier=verifier,
        )

    def copy(self, **changes: Any) -> "Vault":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "salt": self.salt,
        }
        if self.verifier is not None:
            result["verifier"] = self.verifier
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "Vault":
        """Create from dictionary, validating every field.

        Raises:
            ValidationError: If a field is missing or malformed
        """
        data = require_mapping(data, "vault")
        vault_id = require_field(data, "id", str, "vault")
        if not vault_id.strip():
            raise ValidationError("vault.id must not be blank", operation="parse")

        salt = require_field(data, "salt", str, "vault")
        if not salt:
            raise ValidationError("vault.salt must not be empty", operation="parse", entity_id=vault_id)

        verifier = data.get("verifier")
        if verifier is not None and not isinstance(verifier, str):
            raise ValidationError("vault.verifier must be a string", operation="parse", entity_id=vault_id)

        return cls(
            id=vault_id,
            name=require_field(data, "name", str, "vault"),
            description=require_field(data, "description", str, "vault"),
            salt=salt,
            created_at=parse_timestamp(data, "created_at", "vault"),
            updated_at=parse_timestamp(data, "updated_at", "vault"),
            verifier=verifier,
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Vault":
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid vault JSON: {e}", operation="parse") from e
        return cls.from_dict(data)


@dataclass
class ArchiveMetadata:
    """Plaintext header of an export archive."""

    vault: Vault
    note_count: int
    export_date: datetime = field(default_factory=utc_now)
    format_version: str = ARCHIVE_FORMAT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "vault": self.vault.to_dict(),
            "note_count": self.note_count,
            "export_date": format_timestamp(self.export_date),
            "format_version": self.format_version,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "ArchiveMetadata":
        data = require_mapping(data, "archive metadata")
        return cls(
            vault=Vault.from_dict(require_field(data, "vault", dict, "archive metadata")),
            note_count=require_field(data, "note_count", int, "archive metadata"),
            export_date=parse_timestamp(data, "export_date", "archive metadata"),
            format_version=require_field(data, "format_version", str, "archive metadata"),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "ArchiveMetadata":
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid archive metadata JSON: {e}", operation="parse") from e
        return cls.from_dict(data)
