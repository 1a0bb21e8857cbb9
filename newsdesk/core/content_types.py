"""Article types flowing through the ingestion pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class RawArticle:
    """A freshly scraped article, consumed once per pipeline run."""

    url: str
    title: str
    content: str
    source_id: str | None = None


@dataclass(frozen=True)
class ArticleRecord:
    """An article already persisted in the article store."""

    id: int
    url: str
    normalized_url: str
    title: str
    content: str
    content_hash: str | None = None
    source_id: str | None = None
    created_at: datetime | None = None


class DuplicateType(str, Enum):
    """Which strategy flagged the duplicate."""

    URL = "url"
    TITLE = "title"
    HASH = "hash"
    CONTENT = "content"


@dataclass(frozen=True)
class DuplicateCheckResult:
    """Outcome of a duplicate check. Never mutated after return."""

    is_duplicate: bool
    confidence: float
    duplicate_type: DuplicateType | None = None
    matched_article_id: int | None = None
    matched_title: str | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if self.is_duplicate and (self.confidence <= 0 or self.duplicate_type is None):
            raise ValueError("a duplicate needs a positive confidence and a duplicate_type")

    @classmethod
    def not_duplicate(cls) -> DuplicateCheckResult:
        return cls(is_duplicate=False, confidence=0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_duplicate": self.is_duplicate,
            "confidence": round(self.confidence, 4),
            "duplicate_type": self.duplicate_type.value if self.duplicate_type else None,
            "matched_article_id": self.matched_article_id,
            "matched_title": self.matched_title,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RewrittenArticle:
    """Finalized article payload ready to be persisted by the article store.

    content_hash is the fingerprint of the *original* scraped content, so a
    later scrape of the same source text is caught by the hash strategy.
    """

    url: str
    normalized_url: str
    original_title: str
    title: str
    content: str
    content_hash: str
    provider_name: str
    title_provider: str
    source_id: str | None = None
    keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
