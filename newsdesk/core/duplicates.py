"""Multi-strategy duplicate detection for scraped articles.

Strategies run in a fixed order and the first positive match wins:
1. URL: raw or normalized URL already stored
2. TITLE: character-set similarity against titles from the last 7 days
3. HASH: fingerprint of the canonicalized content already stored
4. CONTENT: keyword-profile similarity against bodies from the last 3 days

Usage:
    detector = DuplicateDetector(db)
    result = await detector.detect(url, title, content, source_id="src-1")
    if result.is_duplicate:
        ...
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from newsdesk.core.canonical import canonicalize_text, fingerprint, normalize_url
from newsdesk.core.content_types import (
    DuplicateCheckResult,
    DuplicateType,
    RawArticle,
)
from newsdesk.core.errors import InvalidInputError
from newsdesk.core.similarity import (
    char_similarity,
    extract_keyword_profile,
    profile_similarity,
)
from newsdesk.core.storage import ArticleStore

logger = logging.getLogger(__name__)

# Similarity thresholds
TITLE_SIMILARITY = 0.85
SAME_SOURCE_TITLE_SIMILARITY = 0.75  # same source republishes near-identical titles
CONTENT_SIMILARITY = 0.80

# Look-back windows (days) and scan bounds
TITLE_WINDOW_DAYS = 7
CONTENT_WINDOW_DAYS = 3
CONTENT_SCAN_LIMIT = 100

BATCH_SIZE = 5

# Minimum canonical length for an article to be scored at all
MIN_TITLE_CHARS = 2
MIN_CONTENT_CHARS = 10


class DuplicateDetector:
    """Runs the four duplicate strategies against an article store. Read-only."""

    def __init__(self, store: ArticleStore):
        self._store = store

    async def detect(
        self,
        url: str,
        title: str,
        content: str,
        source_id: str | None = None,
    ) -> DuplicateCheckResult:
        """Check one article against the store.

        Store lookups are blocking, so the strategies run in the default
        thread pool and concurrent checks do not stall the event loop.

        Raises:
            InvalidInputError: If the URL is empty or title/content are too short.
        """
        _validate(url, title, content)
        return await asyncio.get_event_loop().run_in_executor(
            None,
            lambda: self._run_strategies(url, title, content, source_id),
        )

    async def detect_article(self, article: RawArticle) -> DuplicateCheckResult:
        return await self.detect(article.url, article.title, article.content, article.source_id)

    async def detect_batch(
        self, items: Sequence[RawArticle]
    ) -> list[DuplicateCheckResult | InvalidInputError]:
        """Check many articles, five at a time.

        Each group runs concurrently; the next group starts once the current
        one is done. Output index i always belongs to input index i. An
        article that fails validation gets its `InvalidInputError` in its slot
        instead of a result; any other error propagates.
        """
        results: list[DuplicateCheckResult | InvalidInputError | None] = [None] * len(items)

        for start in range(0, len(items), BATCH_SIZE):
            group = items[start : start + BATCH_SIZE]
            group_results = await asyncio.gather(
                *(self.detect_article(article) for article in group),
                return_exceptions=True,
            )
            for offset, result in enumerate(group_results):
                if isinstance(result, InvalidInputError):
                    logger.warning(f"Rejected article {start + offset} in batch: {result}")
                elif isinstance(result, BaseException):
                    raise result
                results[start + offset] = result

        return results  # type: ignore[return-value]

    # ==================== Strategies ====================

    def _run_strategies(
        self, url: str, title: str, content: str, source_id: str | None
    ) -> DuplicateCheckResult:
        result = self._check_url(url)
        if result.is_duplicate:
            return result

        result = self._check_title(title, source_id)
        if result.is_duplicate:
            return result

        result = self._check_content_hash(content)
        if result.is_duplicate:
            return result

        result = self._check_content_similarity(content)
        if result.is_duplicate:
            return result

        return DuplicateCheckResult.not_duplicate()

    def _check_url(self, url: str) -> DuplicateCheckResult:
        normalized = normalize_url(url)
        existing = self._store.find_by_url(url) or self._store.find_by_normalized_url(normalized)
        if existing is None:
            return DuplicateCheckResult.not_duplicate()

        return DuplicateCheckResult(
            is_duplicate=True,
            confidence=1.0,
            duplicate_type=DuplicateType.URL,
            matched_article_id=existing.id,
            matched_title=existing.title,
            reason="URL already stored",
        )

    def _check_title(self, title: str, source_id: str | None) -> DuplicateCheckResult:
        for record in self._store.find_recent(TITLE_WINDOW_DAYS):
            try:
                similarity = char_similarity(title, record.title)
            except Exception as e:
                logger.warning(f"Skipping article {record.id} in title scan: {e}")
                continue

            same_source = bool(source_id) and record.source_id == source_id
            threshold = SAME_SOURCE_TITLE_SIMILARITY if same_source else TITLE_SIMILARITY

            if similarity >= threshold:
                return DuplicateCheckResult(
                    is_duplicate=True,
                    confidence=similarity,
                    duplicate_type=DuplicateType.TITLE,
                    matched_article_id=record.id,
                    matched_title=record.title,
                    reason=f"Title similarity {round(similarity * 100)}%",
                )

        return DuplicateCheckResult.not_duplicate()

    def _check_content_hash(self, content: str) -> DuplicateCheckResult:
        existing = self._store.find_by_content_hash(fingerprint(content))
        if existing is None:
            return DuplicateCheckResult.not_duplicate()

        return DuplicateCheckResult(
            is_duplicate=True,
            confidence=1.0,
            duplicate_type=DuplicateType.HASH,
            matched_article_id=existing.id,
            matched_title=existing.title,
            reason="Identical content",
        )

    def _check_content_similarity(self, content: str) -> DuplicateCheckResult:
        profile = extract_keyword_profile(content)
        if not profile:
            return DuplicateCheckResult.not_duplicate()

        candidates = self._store.find_recent(
            CONTENT_WINDOW_DAYS, limit=CONTENT_SCAN_LIMIT, require_content=True
        )
        for record in candidates:
            if not record.content:
                continue
            try:
                similarity = profile_similarity(profile, extract_keyword_profile(record.content))
            except Exception as e:
                logger.warning(f"Skipping article {record.id} in content scan: {e}")
                continue

            if similarity >= CONTENT_SIMILARITY:
                return DuplicateCheckResult(
                    is_duplicate=True,
                    confidence=similarity,
                    duplicate_type=DuplicateType.CONTENT,
                    matched_article_id=record.id,
                    matched_title=record.title,
                    reason=f"Content similarity {round(similarity * 100)}%",
                )

        return DuplicateCheckResult.not_duplicate()

    # ==================== Hash maintenance ====================

    def update_content_hash(self, article_id: int, content: str) -> str:
        """Recompute and store the fingerprint of one stored article."""
        content_hash = fingerprint(content)
        self._store.update_content_hash(article_id, content_hash)
        return content_hash

    def backfill_content_hashes(self, batch_size: int = 10) -> dict[str, Any]:
        """Fingerprint every stored article that has no content hash yet.

        Articles without content are skipped. A failing article is logged and
        does not stop the rest of the backfill.
        """
        articles = self._store.list_without_content_hash()
        logger.info(f"Found {len(articles)} articles without content hash")

        updated = skipped = failed = 0
        for start in range(0, len(articles), batch_size):
            for article in articles[start : start + batch_size]:
                if not article.content:
                    skipped += 1
                    continue
                try:
                    self.update_content_hash(article.id, article.content)
                    updated += 1
                except Exception as e:
                    failed += 1
                    logger.warning(f"Content hash update failed for article {article.id}: {e}")

            done = min(start + batch_size, len(articles))
            logger.info(f"Content hash backfill: {done}/{len(articles)}")

        return {
            "found": len(articles),
            "updated": updated,
            "skipped": skipped,
            "failed": failed,
        }


def _validate(url: str, title: str, content: str) -> None:
    if not url or not url.strip():
        raise InvalidInputError("Article URL is empty")
    if len(canonicalize_text(title)) < MIN_TITLE_CHARS:
        raise InvalidInputError(f"Article title too short: {title!r}")
    if len(canonicalize_text(content)) < MIN_CONTENT_CHARS:
        raise InvalidInputError("Article content too short to compare")
