"""Glossary API routes: CRUD, lock toggle and CSV exchange for a project."""

import io
from typing import Any, Optional

from fastapi import APIRouter, File, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from novel_translator.models import Term, TermCategory
from novel_translator.services.glossary_service import GlossaryService
from novel_translator.utils.encoding import decode_content

router = APIRouter(prefix="/api/v1/projects/{project_id}/glossary", tags=["glossary"])

_glossary_service: Optional[GlossaryService] = None


def set_glossary_service(service: GlossaryService) -> None:
    """Set the glossary service instance."""
    global _glossary_service
    _glossary_service = service


def _get_service() -> GlossaryService:
    if _glossary_service is None:
        raise RuntimeError("GlossaryService not initialized")
    return _glossary_service


class TermRequest(BaseModel):
    """Request body for adding a glossary term.

    ``from_selection`` marks a term picked from the reader, which is locked.
    """

    original: str
    translation: str = ""
    category: str = TermCategory.OTHER.value
    is_locked: bool = False
    from_selection: bool = False


class TermUpdateRequest(BaseModel):
    """Request body for editing a term; omitted fields are left unchanged."""

    original: Optional[str] = None
    translation: Optional[str] = None
    category: Optional[str] = None
    is_locked: Optional[bool] = None


class GlossaryResponse(BaseModel):
    """Response with glossary entries."""

    entries: list[dict[str, Any]]
    total: int
    locked: int
    categories: list[str]


@router.get("", response_model=GlossaryResponse)
async def get_glossary(project_id: str, q: Optional[str] = None) -> GlossaryResponse:
    """Get glossary entries, optionally filtered by ``q``."""
    return GlossaryResponse(**_get_service().get_glossary(project_id, q))


@router.post("", response_model=Term, status_code=201)
async def add_term(project_id: str, request: TermRequest) -> Term:
    service = _get_service()
    if request.from_selection:
        return service.add_from_selection(
            project_id, request.original, request.translation, request.category
        )
    return service.add_term(
        project_id,
        request.original,
        request.translation,
        request.category,
        is_locked=request.is_locked,
    )


@router.get("/export")
async def export_glossary_csv(project_id: str) -> StreamingResponse:
    """Export glossary as CSV download."""
    output = io.StringIO(_get_service().export_csv(project_id))
    return StreamingResponse(
        output,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={project_id}_glossary.csv"},
    )


@router.post("/import")
async def import_glossary_csv(project_id: str, file: UploadFile = File(...)) -> dict[str, Any]:
    """Import glossary entries from an uploaded CSV."""
    service = _get_service()
    content = await file.read()
    counts = service.import_csv(project_id, decode_content(content))
    return {"status": "ok", **counts, "total": len(service.list_terms(project_id))}


@router.put("/{term_id}", response_model=Term)
async def update_term(project_id: str, term_id: int, request: TermUpdateRequest) -> Term:
    fields = request.model_dump(exclude_none=True)
    return _get_service().update_term(project_id, term_id, **fields)


@router.post("/{term_id}/lock", response_model=Term)
async def toggle_lock(project_id: str, term_id: int) -> Term:
    """Flip the lock flag of a term."""
    return _get_service().toggle_lock(project_id, term_id)


@router.delete("/{term_id}")
async def delete_term(project_id: str, term_id: int) -> dict[str, str]:
    _get_service().remove_term(project_id, term_id)
    return {"status": "ok"}
