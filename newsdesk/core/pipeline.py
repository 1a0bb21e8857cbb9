"""Pipeline Coordinator - per-article decision: skip, rewrite-and-emit, or fail.

State machine:
    RECEIVED -> CHECKING -> DUPLICATE
                         -> REWRITING -> REWRITTEN
                                      -> FAILED

Nothing is persisted here. A REWRITTEN result carries the finalized article
for the caller to save; DUPLICATE and FAILED results carry the reason, and the
caller decides whether to drop, log or keep the article as a draft.

Usage:
    pipeline = PipelineCoordinator(DuplicateDetector(db), FailoverOrchestrator(registry))
    result = await pipeline.process(RawArticle(url, title, content, source_id))
    if result.state == ArticleState.REWRITTEN:
        db.save_article(result.article)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from newsdesk.core.canonical import fingerprint, normalize_url
from newsdesk.core.content_types import DuplicateCheckResult, RawArticle, RewrittenArticle
from newsdesk.core.duplicates import DuplicateDetector
from newsdesk.core.errors import InvalidInputError
from newsdesk.core.failover import FailoverOrchestrator, RewriteKind

logger = logging.getLogger(__name__)


class ArticleState(str, Enum):
    """States of one article in the pipeline."""

    RECEIVED = "received"
    CHECKING = "checking"
    DUPLICATE = "duplicate"
    REWRITING = "rewriting"
    REWRITTEN = "rewritten"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ArticleState.DUPLICATE, ArticleState.REWRITTEN, ArticleState.FAILED})


@dataclass
class PipelineResult:
    """Tracks the state of one article and its terminal payload."""

    state: ArticleState = ArticleState.RECEIVED
    history: list[ArticleState] = field(default_factory=lambda: [ArticleState.RECEIVED])
    duplicate: DuplicateCheckResult | None = None
    article: RewrittenArticle | None = None
    error: str | None = None

    def advance(self, state: ArticleState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Article already finished in state {self.state.value}")
        self.state = state
        self.history.append(state)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "history": [s.value for s in self.history],
            "duplicate": self.duplicate.to_dict() if self.duplicate else None,
            "article": self.article.to_dict() if self.article else None,
            "error": self.error,
        }


def split_keywords(keywords: str) -> list[str]:
    return [k.strip() for k in keywords.split(",") if k.strip()]


class PipelineCoordinator:
    """Composes duplicate detection and failover rewriting for each article."""

    def __init__(
        self,
        detector: DuplicateDetector,
        orchestrator: FailoverOrchestrator,
        keywords: str = "",
    ):
        self._detector = detector
        self._orchestrator = orchestrator
        self._keywords = keywords

    async def process(self, article: RawArticle, keywords: str | None = None) -> PipelineResult:
        """Run one article through the pipeline.

        Raises:
            InvalidInputError: If the article is empty or too short to check.
        """
        result = PipelineResult()
        result.advance(ArticleState.CHECKING)
        duplicate = await self._detector.detect_article(article)
        await self._after_check(article, duplicate, keywords, result)
        return result

    async def process_batch(
        self,
        articles: Sequence[RawArticle],
        keywords: str | None = None,
    ) -> list[PipelineResult]:
        """Check all articles in concurrent groups, then rewrite novel ones in order.

        An article that fails validation ends FAILED with the reason instead
        of aborting the batch.
        """
        results = [PipelineResult() for _ in articles]
        for result in results:
            result.advance(ArticleState.CHECKING)

        checks = await self._detector.detect_batch(articles)
        for article, check, result in zip(articles, checks, results):
            if isinstance(check, InvalidInputError):
                self._fail(result, f"invalid input: {check}")
                continue
            await self._after_check(article, check, keywords, result)
        return results

    async def _after_check(
        self,
        article: RawArticle,
        duplicate: DuplicateCheckResult,
        keywords: str | None,
        result: PipelineResult,
    ) -> None:
        if duplicate.is_duplicate:
            result.duplicate = duplicate
            result.advance(ArticleState.DUPLICATE)
            logger.info(
                f"Skipping duplicate '{article.title}': {duplicate.duplicate_type.value} "
                f"({round(duplicate.confidence * 100)}%) matches article {duplicate.matched_article_id}"
            )
            return

        result.advance(ArticleState.REWRITING)
        keywords = self._keywords if keywords is None else keywords

        title = await self._orchestrator.rewrite(RewriteKind.TITLE, article.title, keywords)
        if not title.success:
            self._fail(result, f"title rewrite failed: {title.error}")
            return

        body = await self._orchestrator.rewrite(RewriteKind.BODY, article.content, keywords)
        if not body.success:
            self._fail(result, f"body rewrite failed: {body.error}")
            return

        result.article = RewrittenArticle(
            url=article.url,
            normalized_url=normalize_url(article.url),
            original_title=article.title,
            title=title.content or article.title,
            content=body.content or article.content,
            content_hash=fingerprint(article.content),
            provider_name=body.provider_name,
            title_provider=title.provider_name,
            source_id=article.source_id,
            keywords=split_keywords(keywords),
        )
        result.advance(ArticleState.REWRITTEN)
        logger.info(f"Rewrote '{article.title}' with {body.provider_name}")

    def _fail(self, result: PipelineResult, error: str) -> None:
        result.error = error
        result.advance(ArticleState.FAILED)
        logger.error(error)
