"""Note and tag models.

Notes are versioned text documents with hierarchical, path-like tags
(e.g. "work/project/urgent").
"""

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from ..exceptions import ValidationError
from .common import (
    format_timestamp,
    next_timestamp,
    parse_timestamp,
    require_field,
    require_mapping,
    utc_now,
)

# Version assigned to a freshly created note
INITIAL_VERSION = 1

TAG_SEPARATOR = "/"


@dataclass(frozen=True)
class Tag:
    """A tag with hierarchical structure."""

    path: str
    name: str
    parent: Optional[str] = None

    @classmethod
    def from_path(cls, path: str) -> "Tag":
        """Parse a tag path such as "work/project/urgent"."""
        parts = path.split(TAG_SEPARATOR)
        parent = TAG_SEPARATOR.join(parts[:-1]) if len(parts) > 1 else None
        return cls(path=path, name=parts[-1], parent=parent)

    def ancestors(self) -> list[str]:
        """All ancestor paths, outermost first."""
        parts = self.path.split(TAG_SEPARATOR)
        return [TAG_SEPARATOR.join(parts[:i]) for i in range(1, len(parts))]


@dataclass
class Note:
    """A versioned note stored inside a vault.

    Attributes:
        id: Unique identifier within the vault, never reused
        title: Note title
        content: Markdown content
        tags: Ordered hierarchical tag paths
        created_at: Creation timestamp (UTC)
        updated_at: Last update timestamp (UTC)
        version: Incremented by exactly one on every update
    """

    id: str
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = INITIAL_VERSION

    @classmethod
    def new(cls, title: str, content: str, tags: Optional[list[str]] = None) -> "Note":
        """Create a note with a fresh id and matching timestamps."""
        now = utc_now()
        return cls(
            id=str(uuid.uuid4()),
            title=title,
            content=content,
            tags=list(tags or []),
            created_at=now,
            updated_at=now,
            version=INITIAL_VERSION,
        )

    def with_changes(
        self,
        title: Optional[str] = None,
        content: Optional[str] = None,
        tags: Optional[list[str]] = None,
    ) -> "Note":
        """Copy with edited fields; version and timestamps are left alone."""
        return replace(
            self,
            title=self.title if title is None else title,
            content=self.content if content is None else content,
            tags=list(self.tags if tags is None else tags),
        )

    def next_version(self) -> "Note":
        """Copy with version + 1 and an updated_at strictly after the current one."""
        return replace(
            self,
            tags=list(self.tags),
            version=self.version + 1,
            updated_at=next_timestamp(self.updated_at),
        )

    @property
    def tag_objects(self) -> list[Tag]:
        return [Tag.from_path(tag) for tag in self.tags]

    def expanded_tags(self) -> list[str]:
        """Tag paths plus all of their ancestors, without duplicates."""
        seen: dict[str, None] = {}
        for tag in self.tag_objects:
            for path in (*tag.ancestors(), tag.path):
                seen.setdefault(path, None)
        return list(seen)

    def has_tag(self, path: str) -> bool:
        """True if the note carries ``path`` or a tag nested under it."""
        return path.strip(TAG_SEPARATOR) in self.expanded_tags()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "version": self.version,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "Note":
        """Create from dictionary, validating every field.

        Raises:
            ValidationError: If a field is missing or malformed
        """
        data = require_mapping(data, "note")
        note_id = require_field(data, "id", str, "note")
        if not note_id.strip():
            raise ValidationError("note.id must not be blank", operation="parse")

        tags = require_field(data, "tags", list, "note")
        if not all(isinstance(tag, str) for tag in tags):
            raise ValidationError("note.tags must be a list of strings", operation="parse", entity_id=note_id)

        version = require_field(data, "version", int, "note")
        if version < INITIAL_VERSION:
            raise ValidationError(
                f"note.version must be >= {INITIAL_VERSION}", operation="parse", entity_id=note_id
            )

        return cls(
            id=note_id,
            title=require_field(data, "title", str, "note"),
            content=require_field(data, "content", str, "note"),
            tags=list(tags),
            created_at=parse_timestamp(data, "created_at", "note"),
            updated_at=parse_timestamp(data, "updated_at", "note"),
            version=version,
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Note":
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid note JSON: {e}", operation="parse") from e
        return cls.from_dict(data)
