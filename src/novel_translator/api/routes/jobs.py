"""Job API routes for scans and batch translations."""

from typing import Any, Optional

from fastapi import APIRouter, HTTPException

from novel_translator.services.pipeline_service import PipelineService

router = APIRouter(prefix="/api/v1", tags=["jobs"])

_pipeline_service: Optional[PipelineService] = None


def set_pipeline_service(service: PipelineService) -> None:
    """Set the shared pipeline service instance."""
    global _pipeline_service
    _pipeline_service = service


def _get_service() -> PipelineService:
    if _pipeline_service is None:
        raise RuntimeError("PipelineService not initialized")
    return _pipeline_service


@router.post("/projects/{project_id}/scan", status_code=202)
async def start_scan(project_id: str) -> dict[str, Any]:
    """Start a deep scan (returns immediately, runs in background)."""
    return await _get_service().start_scan(project_id)


@router.post("/projects/{project_id}/translate", status_code=202)
async def start_batch(project_id: str) -> dict[str, Any]:
    """Start translating all untranslated documents of a project."""
    return await _get_service().start_batch(project_id)


@router.get("/jobs")
async def list_jobs(project_id: Optional[str] = None) -> list[dict[str, Any]]:
    """List jobs, newest first."""
    return _get_service().list_jobs(project_id)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str) -> dict[str, Any]:
    job = _get_service().get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs/{job_id}/pause")
async def pause_job(job_id: str) -> dict[str, Any]:
    return _get_service().pause_job(job_id)


@router.post("/jobs/{job_id}/resume")
async def resume_job(job_id: str) -> dict[str, Any]:
    return _get_service().resume_job(job_id)


@router.post("/jobs/{job_id}/stop")
async def stop_job(job_id: str) -> dict[str, Any]:
    """Request a stop; the current document finishes first."""
    return _get_service().stop_job(job_id)
