"""FastAPI app (internal-only).

Health check, crawl progress and a manual crawl trigger. The web application
owns the public API; these endpoints are for operators and the scheduler.
"""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from .domain.models import SourceType
from .lifespan import ServiceContainer
from .queues.jobs import CRAWL_JOB, CRAWL_JOB_OPTIONS, CRAWL_QUEUE, CrawlJobPayload

app = FastAPI(title="Website Ingestion Service", version="0.1.0")


class CrawlRequest(BaseModel):
    incremental: bool = False


def _container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="service_not_ready")
    return container


def _dt(v):
    return v.isoformat() if v is not None else None


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/api/v1/sources/{source_id}/progress")
async def source_progress(source_id: str, request: Request):
    container = _container(request)
    source = await container.sources.get(source_id)
    if source is None:
        raise HTTPException(status_code=404, detail="source_not_found")

    page_counts = await container.pages.count_by_status(source_id)
    run = await container.runs.get_latest(source_id)
    return {
        "sourceId": source.id,
        "sourceType": source.source_type,
        "crawlStatus": source.crawl_status,
        "pagesTotal": source.pages_total,
        "pagesScraped": source.pages_scraped,
        "pageCounts": page_counts,
        "lastScrapedAt": _dt(source.last_scraped_at),
        "error": source.error,
        "latestRun": None
        if run is None
        else {
            "runId": run.id,
            "status": run.status,
            "pagesFound": run.pages_found,
            "newPages": run.new_pages,
            "pagesScraped": run.pages_scraped,
            "pagesFailed": run.pages_failed,
            "error": run.error,
            "startedAt": _dt(run.started_at),
            "completedAt": _dt(run.completed_at),
        },
    }


@app.post("/api/v1/sources/{source_id}/crawl", status_code=202)
async def trigger_crawl(source_id: str, payload: CrawlRequest, request: Request):
    container = _container(request)
    source = await container.sources.get(source_id)
    if source is None:
        raise HTTPException(status_code=404, detail="source_not_found")
    if source.source_type != SourceType.WEBSITE.value:
        raise HTTPException(status_code=400, detail="source_not_website")
    if await container.orchestrator.is_crawl_active(source):
        raise HTTPException(status_code=409, detail="crawl_in_progress")

    job_id = await container.dispatcher.enqueue(
        CRAWL_QUEUE,
        CRAWL_JOB,
        CrawlJobPayload(source_id=source.id, website_url=source.url, is_incremental=payload.incremental),
        CRAWL_JOB_OPTIONS,
    )
    return {"jobId": job_id, "sourceId": source.id, "incremental": payload.incremental}
