"""
FastAPI app for the manuals service.

Responsibilities:
- Query API used by the chat bot: /health, /manuals/{id}, /search, /suggest
- POST /populate and POST /download: accept the job (202) and run it in the
  background against the same database pool
"""

import logging
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from common import events
from common.config import settings
from common.db import create_pool
from common.errors import ManualNotFound

from .models import AcceptedResponse, CatalogRecord, HealthResponse, SearchResponse, Suggestion
from .runs import new_job_id, run_download, run_populate
from .store import ManualStore

app = FastAPI(title="Manuals Service")
logger = logging.getLogger("api")


@app.on_event("startup")
async def startup() -> None:
    pool = create_pool(settings)
    # don't block startup on the database; /health reports degraded until it is up
    await pool.open(wait=False)
    app.state.pool = pool
    app.state.store = ManualStore(pool, settings.db_schema)


@app.on_event("shutdown")
async def shutdown() -> None:
    pool = getattr(app.state, "pool", None)
    if pool is not None:
        await pool.close()
    await events.close()


def get_store(request: Request) -> ManualStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="store not initialised")
    return store


@app.exception_handler(ManualNotFound)
async def manual_not_found(request: Request, exc: ManualNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.get("/health", response_model=HealthResponse)
async def health(store: ManualStore = Depends(get_store)):
    """
    Readiness plus a row count. Never fails: a database problem shows up as
    status "degraded" so the container stays observable.
    """
    try:
        count = await store.count()
    except Exception:
        logger.exception("health check: store unavailable")
        return HealthResponse(status="degraded", service=settings.service_name)
    return HealthResponse(status="ok", service=settings.service_name, manuals=count)


@app.get("/manuals/{manual_id}", response_model=CatalogRecord)
async def get_manual(manual_id: int, store: ManualStore = Depends(get_store)):
    record = await store.get_by_id(manual_id)
    if record is None:
        raise ManualNotFound(manual_id)
    return record


@app.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query("", description="whitespace separated tokens, all must match"),
    grade: Optional[str] = Query(None),
    limit: int = Query(5),
    store: ManualStore = Depends(get_store),
):
    results = await store.search(q, grade=grade, limit=limit)
    return SearchResponse(query=q, grade=grade, count=len(results), results=results)


@app.get("/suggest", response_model=List[Suggestion])
async def suggest(
    q: str = Query(""),
    limit: int = Query(20),
    store: ManualStore = Depends(get_store),
):
    return await store.suggest(q, limit=limit)


async def _populate_job(store: ManualStore, job_id: str, list_url: Optional[str], download: Optional[bool]) -> None:
    try:
        await run_populate(store, settings, list_url=list_url, download=download, correlation_id=job_id)
    except Exception:
        logger.exception("populate %s failed", job_id)


async def _download_job(store: ManualStore, job_id: str, limit: Optional[int]) -> None:
    try:
        await run_download(store, settings, limit=limit, correlation_id=job_id)
    except Exception:
        logger.exception("download %s failed", job_id)


@app.post("/populate", response_model=AcceptedResponse, status_code=202)
async def populate(
    background: BackgroundTasks,
    url: Optional[str] = Query(None, description="listing url, defaults to BASE_LIST_URL"),
    download: Optional[bool] = Query(None),
    store: ManualStore = Depends(get_store),
):
    """
    HTTP 202 Accepted: a full walk takes minutes, the client only gets a job
    id that shows up in the logs and in the CatalogPopulated event.
    """
    job_id = new_job_id()
    background.add_task(_populate_job, store, job_id, url, download)
    logger.info("accepted populate %s", job_id)
    return AcceptedResponse(job_id=job_id)


@app.post("/download", response_model=AcceptedResponse, status_code=202)
async def download(
    background: BackgroundTasks,
    limit: Optional[int] = Query(None),
    store: ManualStore = Depends(get_store),
):
    job_id = new_job_id()
    background.add_task(_download_job, store, job_id, limit)
    logger.info("accepted download %s", job_id)
    return AcceptedResponse(job_id=job_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.service_port)
