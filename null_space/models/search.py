"""Search result model."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SearchResult:
    """A ranked search hit. Higher score = more relevant."""

    note_id: str
    score: float
    title_snippet: str = ""
    content_snippet: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "note_id": self.note_id,
            "score": self.score,
            "title_snippet": self.title_snippet,
            "content_snippet": self.content_snippet,
        }
