"""ProjectService: projects, document import and text export.

Wraps JsonLibraryStore behind a dict-based API suitable for REST endpoints
and the CLI.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import structlog

from novel_translator.config import get_config
from novel_translator.models import Document, Project
from novel_translator.storage import JsonLibraryStore
from novel_translator.translator.engine import GlossaryTranslator, TranslationOutcome
from novel_translator.utils.encoding import decode_content

logger = structlog.get_logger()

NOT_TRANSLATED = "[Not Translated]"
EXPORT_SEPARATOR = "***\n\n"


def natural_sort_key(name: str) -> list:
    """Sort key that orders ``ch2.txt`` before ``ch10.txt``, ignoring case."""
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", name.casefold())]


def slugify(text: str) -> str:
    """Make a project id from a title."""
    slug = re.sub(r"\W+", "-", text.strip().casefold())
    return slug.strip("-_")


def render_export(documents: Iterable[Document]) -> str:
    """Render documents as one text file.

    Each document becomes a ``### title`` header and its translation, or a
    placeholder when it has none; documents are separated by ``***``.
    """
    return EXPORT_SEPARATOR.join(
        f"### {doc.label}\n\n{doc.translated_text or NOT_TRANSLATED}\n\n" for doc in documents
    )


class ProjectService:
    """Manage projects and their documents."""

    def __init__(
        self,
        store: JsonLibraryStore,
        translator_factory: Optional[Callable[[], GlossaryTranslator]] = None,
    ) -> None:
        self._store = store
        self._translator_factory = translator_factory

    @property
    def store(self) -> JsonLibraryStore:
        return self._store

    def create_project(
        self,
        title: str,
        project_id: Optional[str] = None,
        author: str = "",
        description: str = "",
    ) -> Project:
        """Create a project, deriving its id from the title when none is given.

        Raises:
            ValueError: If the id is invalid or already taken.
        """
        project_id = project_id or slugify(title)
        if not project_id:
            raise ValueError("Project title or id is required")
        return self._store.create_project(project_id, title=title, author=author, description=description)

    def delete_project(self, project_id: str) -> None:
        self._store.delete_project(project_id)
        logger.info("project_deleted", project=project_id)

    def stats(self, project_id: str) -> dict[str, int]:
        """Dashboard counts for a project."""
        documents = self._store.list_documents(project_id)
        translated = sum(1 for d in documents if d.is_translated)
        terms = self._store.list_terms(project_id)
        return {
            "documents": len(documents),
            "translated": translated,
            "remaining": len(documents) - translated,
            "terms": len(terms),
            "locked_terms": sum(1 for t in terms if t.is_locked),
        }

    def list_projects(self) -> list[dict[str, Any]]:
        """List all projects with summary stats."""
        return [
            {**project.model_dump(mode="json"), **self.stats(project.id)}
            for project in self._store.list_projects()
        ]

    def get_project(self, project_id: str) -> dict[str, Any]:
        """Get project detail with its document list (without document bodies).

        Raises:
            RecordNotFoundError: If the project does not exist.
        """
        project = self._store.get_project(project_id)
        return {
            **project.model_dump(mode="json"),
            "stats": self.stats(project_id),
            "documents": self.list_documents(project_id),
        }

    def list_documents(self, project_id: str) -> list[dict[str, Any]]:
        self._store.get_project(project_id)
        return [
            {
                "id": doc.id,
                "order": doc.order,
                "title": doc.label,
                "is_translated": doc.is_translated,
                "last_translated_at": (
                    doc.last_translated_at.isoformat() if doc.last_translated_at else None
                ),
            }
            for doc in self._store.list_documents(project_id)
        ]

    def get_document(self, project_id: str, document_id: int) -> Document:
        """Get one document with source and translated text."""
        doc = self._store.get_document(document_id)
        if doc.project_id != project_id:
            raise ValueError(f"Document {document_id} does not belong to project {project_id}")
        return doc

    async def translate_document(self, project_id: str, document_id: int) -> TranslationOutcome:
        """Translate one document again with the current project glossary.

        An existing translation is replaced only when the new one succeeds;
        on failure the stored document is left as it was.

        Raises:
            RecordNotFoundError: If the document does not exist.
            ValueError: If it belongs to another project.
            RuntimeError: If no translator is configured.
        """
        doc = self.get_document(project_id, document_id)
        if self._translator_factory is None:
            raise RuntimeError("No document translator configured")
        translator = self._translator_factory()
        outcome = await translator.translate(doc, self._store.list_terms(project_id))
        if not outcome.ok:
            logger.warning(
                "document_retranslate_failed",
                project=project_id,
                document=document_id,
                error=outcome.error,
            )
            return outcome

        self._store.update_document(
            document_id, translated_text=outcome.text, last_translated_at=datetime.now()
        )
        logger.info("document_retranslated", project=project_id, document=document_id)
        return outcome

    def update_translation(self, project_id: str, document_id: int, text: str) -> Document:
        """Replace a document's translation with hand-edited text."""
        self.get_document(project_id, document_id)
        doc = self._store.update_document(document_id, translated_text=text)
        logger.info("translation_edited", project=project_id, document=document_id, chars=len(text))
        return doc

    def import_files(self, project_id: str, files: Iterable[tuple[str, bytes]]) -> list[Document]:
        """Add ``(filename, content)`` pairs as documents.

        Files are ordered by natural filename order and appended after the
        project's last document. The title is the filename without extension.
        """
        self._store.get_project(project_id)
        ordered = sorted(files, key=lambda f: natural_sort_key(f[0]))
        existing = self._store.list_documents(project_id)
        next_order = max((d.order for d in existing), default=0) + 1

        documents = [
            Document(
                project_id=project_id,
                order=next_order + i,
                title=Path(name).stem,
                source_text=decode_content(content),
            )
            for i, (name, content) in enumerate(ordered)
        ]
        added = self._store.add_documents(documents)
        logger.info("documents_imported", project=project_id, count=len(added))
        return added

    def import_paths(self, project_id: str, paths: Iterable[Path]) -> list[Document]:
        """Import ``.txt`` files; directories contribute their ``*.txt`` files."""
        files: list[tuple[str, bytes]] = []
        for path in paths:
            path = Path(path)
            if path.is_dir():
                candidates = [p for p in path.iterdir() if p.suffix.lower() == ".txt" and p.is_file()]
            else:
                candidates = [path]
            files.extend((p.name, p.read_bytes()) for p in candidates)
        if not files:
            raise ValueError("No .txt files to import")
        return self.import_files(project_id, files)

    def export_text(self, project_id: str) -> str:
        """Export all documents of a project as one UTF-8 text."""
        self._store.get_project(project_id)
        return render_export(self._store.list_documents(project_id))

    def export_filename(self, project_id: str) -> str:
        project = self._store.get_project(project_id)
        language = get_config().translation.target_language
        return f"{project.title or project.id}_{language}.txt"
