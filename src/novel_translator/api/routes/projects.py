"""Project API routes: library, documents, upload and export."""

from typing import Any, Optional
from urllib.parse import quote

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from novel_translator.models import Document
from novel_translator.services.project_service import ProjectService

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])

_project_service: Optional[ProjectService] = None


def set_project_service(service: ProjectService) -> None:
    """Set the project service instance."""
    global _project_service
    _project_service = service


def _get_service() -> ProjectService:
    if _project_service is None:
        raise RuntimeError("ProjectService not initialized")
    return _project_service


class UpdateTranslationRequest(BaseModel):
    """Request body for a hand-edited translation."""

    translated_text: str


class CreateProjectRequest(BaseModel):
    """Request body for creating a project."""

    title: str
    id: Optional[str] = None
    author: str = ""
    description: str = ""


@router.get("")
async def list_projects() -> list[dict[str, Any]]:
    """List all projects with summary stats."""
    return _get_service().list_projects()


@router.post("", status_code=201)
async def create_project(request: CreateProjectRequest) -> dict[str, Any]:
    project = _get_service().create_project(
        request.title,
        project_id=request.id,
        author=request.author,
        description=request.description,
    )
    return project.model_dump(mode="json")


@router.get("/{project_id}")
async def get_project(project_id: str) -> dict[str, Any]:
    """Get project detail with stats and document list."""
    return _get_service().get_project(project_id)


@router.delete("/{project_id}")
async def delete_project(project_id: str) -> dict[str, str]:
    """Delete a project with all its documents and glossary terms."""
    _get_service().delete_project(project_id)
    return {"status": "ok"}


@router.get("/{project_id}/documents")
async def list_documents(project_id: str) -> list[dict[str, Any]]:
    return _get_service().list_documents(project_id)


@router.get("/{project_id}/documents/{document_id}", response_model=Document)
async def get_document(project_id: str, document_id: int) -> Document:
    """Get a document with source and translated text."""
    return _get_service().get_document(project_id, document_id)


@router.put("/{project_id}/documents/{document_id}", response_model=Document)
async def update_translation(
    project_id: str, document_id: int, request: UpdateTranslationRequest
) -> Document:
    """Save a hand-edited translation."""
    return _get_service().update_translation(project_id, document_id, request.translated_text)


@router.post("/{project_id}/documents/{document_id}/translate", response_model=Document)
async def translate_document(project_id: str, document_id: int) -> Document:
    """Translate one document again with the current glossary.

    A failed translation leaves the stored text untouched and answers 502.
    """
    service = _get_service()
    outcome = await service.translate_document(project_id, document_id)
    if not outcome.ok:
        raise HTTPException(status_code=502, detail=outcome.error or "Translation failed")
    return service.get_document(project_id, document_id)


@router.post("/{project_id}/documents", status_code=201)
async def upload_documents(
    project_id: str, files: list[UploadFile] = File(...)
) -> dict[str, Any]:
    """Upload ``.txt`` files as new documents, in natural filename order."""
    payload = []
    for upload in files:
        payload.append((upload.filename or "untitled.txt", await upload.read()))
    added = _get_service().import_files(project_id, payload)
    return {
        "status": "ok",
        "imported": len(added),
        "documents": [{"id": d.id, "order": d.order, "title": d.label} for d in added],
    }


@router.get("/{project_id}/export")
async def export_project(project_id: str) -> PlainTextResponse:
    """Download all documents as one text file."""
    service = _get_service()
    text = service.export_text(project_id)
    filename = service.export_filename(project_id)
    return PlainTextResponse(
        text,
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )
