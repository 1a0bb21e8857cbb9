from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from newsdesk.core.content_types import RawArticle
from newsdesk.core.duplicates import DuplicateDetector
from newsdesk.core.errors import InvalidInputError
from newsdesk.core.failover import FailoverOrchestrator
from newsdesk.core.pipeline import ArticleState, PipelineCoordinator
from newsdesk.core.provider_registry import ProviderRegistry
from newsdesk.core.settings import Settings, configure_logging
from newsdesk.core.storage import get_db, init_db

logger = logging.getLogger(__name__)

app = FastAPI(title="newsdesk")

_registry: ProviderRegistry | None = None
_orchestrator: FailoverOrchestrator | None = None


class ArticleIn(BaseModel):
    url: str
    title: str
    content: str
    source_id: str | None = None
    keywords: str | None = None

    def to_raw(self) -> RawArticle:
        return RawArticle(
            url=self.url,
            title=self.title,
            content=self.content,
            source_id=self.source_id,
        )


@app.on_event("startup")
def _startup() -> None:
    global _registry, _orchestrator
    s = Settings.from_env()
    configure_logging(s.log_level)
    init_db()
    _registry = ProviderRegistry(get_db(), timeout=s.rewrite_timeout_s)
    _orchestrator = FailoverOrchestrator(
        _registry,
        retry_delay=s.failover_delay_s,
        call_timeout=s.rewrite_timeout_s,
    )


def get_registry() -> ProviderRegistry:
    assert _registry is not None, "Provider registry not initialized"
    return _registry


def get_pipeline() -> PipelineCoordinator:
    assert _orchestrator is not None, "Orchestrator not initialized"
    return PipelineCoordinator(
        DuplicateDetector(get_db()),
        _orchestrator,
        keywords=get_registry().settings.seo_keywords,
    )


def _bad_request(e: Exception) -> JSONResponse:
    return JSONResponse({"error": str(e)}, status_code=400)


@app.get("/health")
def health():
    db = get_db()
    return {"status": "ok", "db": db.get_stats(), "providers": get_registry().recommended_order()}


@app.get("/api/providers")
def api_providers():
    """Provider health: priority, failure counters and circuit state."""
    registry = get_registry()
    return {"providers": registry.status(), "order": registry.recommended_order()}


@app.post("/api/providers/reset")
def api_providers_reset(name: str | None = None):
    """Close the circuit of one provider, or of all providers when no name is given."""
    registry = get_registry()
    try:
        registry.reset(name)
    except KeyError:
        return JSONResponse({"error": f"Unknown provider: {name}"}, status_code=404)
    return {"providers": registry.status()}


@app.post("/api/providers/reload")
def api_providers_reload():
    """Rebuild the registry after credentials or settings changed."""
    registry = get_registry()
    registry.reload()
    return {"providers": registry.status(), "order": registry.recommended_order()}


@app.get("/api/providers/{name}/health")
async def api_provider_health(name: str):
    """Send a minimal rewrite to one configured provider."""
    registry = get_registry()
    try:
        provider = registry.get(name)
    except KeyError:
        return JSONResponse({"error": f"Provider not configured: {name}"}, status_code=404)

    health = await registry.capability(name).health_check(provider.credential)
    return {
        "provider": health.provider,
        "model": health.model,
        "healthy": health.healthy,
        "message": health.message,
        "latency_ms": health.latency_ms,
    }


@app.post("/api/articles/check")
async def api_articles_check(article: ArticleIn):
    """Run duplicate detection only."""
    detector = DuplicateDetector(get_db())
    try:
        result = await detector.detect_article(article.to_raw())
    except InvalidInputError as e:
        return _bad_request(e)
    return result.to_dict()


@app.post("/api/articles/process")
async def api_articles_process(article: ArticleIn):
    """Check, rewrite and save one article.

    Duplicates and failed rewrites are reported, never saved.
    """
    try:
        result = await get_pipeline().process(article.to_raw(), keywords=article.keywords)
    except InvalidInputError as e:
        return _bad_request(e)

    payload = result.to_dict()
    if result.state == ArticleState.REWRITTEN and result.article is not None:
        payload["article_id"] = get_db().save_article(result.article)
    return payload


@app.post("/api/articles/backfill-hashes")
def api_articles_backfill_hashes():
    """Fingerprint stored articles that predate content hashing."""
    detector = DuplicateDetector(get_db())
    return detector.backfill_content_hashes()
