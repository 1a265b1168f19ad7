"""
Scraping API Router
Manual per-source triggers, cancellation and job progress queries
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Dict, Any
import logging

from context import EngineContext
from pipeline.orchestrator import RunMode
from routers.dependencies import get_engine
from utils.errors import SourceBusy, UnknownSource

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/sources")
async def list_sources(engine: EngineContext = Depends(get_engine)) -> Dict[str, Any]:
    """Registered catalog sources and their running jobs"""
    active = engine.orchestrator.active_runs()
    sources = []
    for config in engine.registry:
        sources.append({
            "source_id": config.source_id,
            "display_name": config.display_name,
            "uniqueness_key": config.uniqueness_key.value,
            "stored_products": await engine.db.count_products(config.source_id),
            "active_job_id": active.get(config.source_id),
        })
    return {"sources": sources, "total": len(sources)}


@router.get("/sources/{source_id}/categories")
async def list_categories(
    source_id: str,
    active_only: bool = Query(True),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """Persisted categories of one source"""
    if source_id not in engine.registry:
        raise HTTPException(status_code=404, detail=f"Unknown catalog source: {source_id}")
    categories = await engine.db.get_categories(source_id, active_only=active_only)
    return {
        "source_id": source_id,
        "categories": [category.model_dump(mode="json") for category in categories],
        "total": len(categories),
    }


@router.get("/jobs")
async def list_jobs(engine: EngineContext = Depends(get_engine)) -> Dict[str, Any]:
    """Running jobs and jobs finished within the grace window"""
    jobs = [snapshot.model_dump(mode="json") for snapshot in engine.tracker.all_jobs()]
    return {"jobs": jobs, "total": len(jobs)}


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, engine: EngineContext = Depends(get_engine)) -> Dict[str, Any]:
    snapshot = engine.tracker.get_job(job_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' not found")
    return snapshot.model_dump(mode="json")


@router.post("/{source_id}", status_code=202)
async def trigger_source(
    source_id: str,
    mode: RunMode = Query(RunMode.ALL),
    resume: bool = Query(False),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """Start a background run for one source"""
    try:
        job_id = engine.orchestrator.start(source_id, mode=mode, resume=resume)
    except UnknownSource as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SourceBusy as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "job_id": job_id,
        "source_id": source_id,
        "mode": mode.value,
        "resume": resume,
        "progress_stream": f"/ws/jobs/{job_id}",
    }


@router.delete("/{source_id}")
async def cancel_source(source_id: str, engine: EngineContext = Depends(get_engine)) -> Dict[str, Any]:
    """Request cooperative cancellation of the source's running job"""
    if source_id not in engine.registry:
        raise HTTPException(status_code=404, detail=f"Unknown catalog source: {source_id}")
    if not engine.orchestrator.cancel(source_id):
        raise HTTPException(status_code=404, detail=f"No running job for {source_id}")
    return {"source_id": source_id, "cancel_requested": True}
