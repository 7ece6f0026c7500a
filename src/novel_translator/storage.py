"""Glossary and document stores.

The pipelines only depend on the ``GlossaryStore`` and ``DocumentStore``
protocols. ``JsonLibraryStore`` implements both on top of a single JSON file
(projects, documents and terms with auto-increment ids).
"""

import json
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

from novel_translator.models import Document, Project, Term, TermCategory

logger = structlog.get_logger()

LIBRARY_FILE = "library.json"

_TERM_FIELDS = {"original", "translation", "category", "is_locked"}
_DOCUMENT_FIELDS = {"title", "order", "source_text", "translated_text", "last_translated_at"}


class RecordNotFoundError(KeyError):
    """Raised when a project, document or term id does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Record not found"


class GlossaryStore(Protocol):
    """Per-project glossary persistence."""

    def list_terms(self, project_id: str) -> list[Term]:
        ...

    def insert_term(self, term: Term) -> int:
        ...

    def update_term(self, term_id: int, **fields: Any) -> Term:
        ...

    def delete_term(self, term_id: int) -> None:
        ...


class DocumentStore(Protocol):
    """Per-project document persistence."""

    def list_documents(self, project_id: str) -> list[Document]:
        """Documents of a project sorted by ``order``."""
        ...

    def update_document(self, document_id: int, **fields: Any) -> Document:
        ...


class LibraryData(BaseModel):
    """On-disk layout of ``library.json``."""

    projects: list[Project] = Field(default_factory=list)
    documents: list[Document] = Field(default_factory=list)
    terms: list[Term] = Field(default_factory=list)
    next_document_id: int = 1
    next_term_id: int = 1


class JsonLibraryStore:
    """Thread-safe JSON file store implementing GlossaryStore and DocumentStore.

    Every mutation is written back to disk immediately so a crash never loses
    more than the in-flight operation.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / LIBRARY_FILE
        self._lock = threading.RLock()
        self._data: Optional[LibraryData] = None

    # ------------------------------------------------------------------
    # File handling
    # ------------------------------------------------------------------

    def _load(self) -> LibraryData:
        if self._data is None:
            if self.path.exists():
                with open(self.path, "r", encoding="utf-8") as f:
                    self._data = LibraryData.model_validate(json.load(f))
            else:
                self._data = LibraryData()
        return self._data

    def _save(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._load().model_dump(mode="json"), f, ensure_ascii=False, indent=2)
        tmp_path.replace(self.path)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        project_id: str,
        title: str = "",
        author: str = "",
        description: str = "",
    ) -> Project:
        """Create a new empty project."""
        if not project_id or project_id != project_id.strip() or "/" in project_id:
            raise ValueError(f"Invalid project id: {project_id!r}")
        with self._lock:
            data = self._load()
            if any(p.id == project_id for p in data.projects):
                raise ValueError(f"Project already exists: {project_id}")
            project = Project(id=project_id, title=title or project_id, author=author, description=description)
            data.projects.append(project)
            self._save()
        logger.info("project_created", project=project_id)
        return project

    def get_project(self, project_id: str) -> Project:
        with self._lock:
            for project in self._load().projects:
                if project.id == project_id:
                    return project.model_copy()
        raise RecordNotFoundError(f"Project not found: {project_id}")

    def list_projects(self) -> list[Project]:
        with self._lock:
            return [p.model_copy() for p in self._load().projects]

    def delete_project(self, project_id: str) -> None:
        """Delete a project with all of its documents and terms in one write."""
        with self._lock:
            data = self._load()
            if not any(p.id == project_id for p in data.projects):
                raise RecordNotFoundError(f"Project not found: {project_id}")
            data.projects = [p for p in data.projects if p.id != project_id]
            data.documents = [d for d in data.documents if d.project_id != project_id]
            data.terms = [t for t in data.terms if t.project_id != project_id]
            self._save()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_documents(self, documents: list[Document]) -> list[Document]:
        """Insert new documents, assigning ids.

        Raises:
            RecordNotFoundError: If a document references an unknown project.
            ValueError: If ``(project_id, order)`` would not be unique.
        """
        with self._lock:
            data = self._load()
            known_projects = {p.id for p in data.projects}
            taken = {(d.project_id, d.order) for d in data.documents}
            for doc in documents:
                if doc.project_id not in known_projects:
                    raise RecordNotFoundError(f"Project not found: {doc.project_id}")
                key = (doc.project_id, doc.order)
                if key in taken:
                    raise ValueError(
                        f"Duplicate document order {doc.order} in project {doc.project_id}"
                    )
                taken.add(key)

            added = []
            for doc in documents:
                stored = doc.model_copy(update={"id": data.next_document_id})
                data.next_document_id += 1
                data.documents.append(stored)
                added.append(stored.model_copy())
            self._save()
        return added

    def get_document(self, document_id: int) -> Document:
        with self._lock:
            return self._find_document(document_id).model_copy()

    def list_documents(self, project_id: str) -> list[Document]:
        with self._lock:
            docs = [d.model_copy() for d in self._load().documents if d.project_id == project_id]
        return sorted(docs, key=lambda d: d.order)

    def update_document(self, document_id: int, **fields: Any) -> Document:
        unknown = set(fields) - _DOCUMENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown document fields: {', '.join(sorted(unknown))}")
        with self._lock:
            doc = self._find_document(document_id)
            if "order" in fields and fields["order"] != doc.order:
                if any(
                    d.project_id == doc.project_id and d.order == fields["order"]
                    for d in self._load().documents
                ):
                    raise ValueError(f"Duplicate document order {fields['order']}")
            for key, value in fields.items():
                setattr(doc, key, value)
            self._save()
            return doc.model_copy()

    def _find_document(self, document_id: int) -> Document:
        for doc in self._load().documents:
            if doc.id == document_id:
                return doc
        raise RecordNotFoundError(f"Document not found: {document_id}")

    # ------------------------------------------------------------------
    # Terms
    # ------------------------------------------------------------------

    def list_terms(self, project_id: str) -> list[Term]:
        with self._lock:
            return [t.model_copy() for t in self._load().terms if t.project_id == project_id]

    def get_term(self, term_id: int) -> Term:
        with self._lock:
            return self._find_term(term_id).model_copy()

    def insert_term(self, term: Term) -> int:
        with self._lock:
            data = self._load()
            if not any(p.id == term.project_id for p in data.projects):
                raise RecordNotFoundError(f"Project not found: {term.project_id}")
            term_id = data.next_term_id
            data.next_term_id += 1
            data.terms.append(term.model_copy(update={"id": term_id}))
            self._save()
        return term_id

    def update_term(self, term_id: int, **fields: Any) -> Term:
        unknown = set(fields) - _TERM_FIELDS
        if unknown:
            raise ValueError(f"Unknown term fields: {', '.join(sorted(unknown))}")
        if "category" in fields:
            fields["category"] = TermCategory.parse(fields["category"])
        with self._lock:
            term = self._find_term(term_id)
            for key, value in fields.items():
                setattr(term, key, value)
            self._save()
            return term.model_copy()

    def delete_term(self, term_id: int) -> None:
        with self._lock:
            data = self._load()
            term = self._find_term(term_id)
            data.terms = [t for t in data.terms if t is not term]
            self._save()

    def _find_term(self, term_id: int) -> Term:
        for term in self._load().terms:
            if term.id == term_id:
                return term
        raise RecordNotFoundError(f"Term not found: {term_id}")
