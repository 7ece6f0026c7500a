"""GlossaryService: business logic for glossary CRUD.

Keeps route handlers and CLI commands thin; every operation validates the
project first so callers get one consistent "not found" error.
"""

from typing import Any, Optional

import structlog

from novel_translator.models import Term, TermCategory
from novel_translator.storage import JsonLibraryStore
from novel_translator.translator.glossary import search_terms, terms_from_csv, terms_to_csv

logger = structlog.get_logger()


class GlossaryService:
    """Manage the glossary of a project."""

    def __init__(self, store: JsonLibraryStore) -> None:
        self._store = store

    def _check_term(self, project_id: str, term_id: int) -> Term:
        term = self._store.get_term(term_id)
        if term.project_id != project_id:
            raise ValueError(f"Term {term_id} does not belong to project {project_id}")
        return term

    def list_terms(self, project_id: str, query: Optional[str] = None) -> list[Term]:
        """Return the project's terms, optionally filtered by a search query."""
        self._store.get_project(project_id)
        return search_terms(self._store.list_terms(project_id), query)

    def get_glossary(self, project_id: str, query: Optional[str] = None) -> dict[str, Any]:
        """Return glossary entries with totals, as served to the web client."""
        terms = self.list_terms(project_id, query)
        return {
            "entries": [t.model_dump(mode="json") for t in terms],
            "total": len(terms),
            "locked": sum(1 for t in terms if t.is_locked),
            "categories": [c.value for c in TermCategory],
        }

    def add_term(
        self,
        project_id: str,
        original: str,
        translation: str = "",
        category: str = TermCategory.OTHER.value,
        is_locked: bool = False,
    ) -> Term:
        """Add a term by hand.

        Raises:
            ValueError: If ``original`` is blank or already in the glossary.
        """
        self._store.get_project(project_id)
        original = original.strip()
        if not original:
            raise ValueError("Term original must not be empty")
        key = original.casefold()
        if any(t.original.casefold() == key for t in self._store.list_terms(project_id)):
            raise ValueError(f"Term already exists: {original}")

        term = Term(
            project_id=project_id,
            original=original,
            translation=translation.strip(),
            category=TermCategory.parse(category),
            is_locked=is_locked,
        )
        term.id = self._store.insert_term(term)
        logger.info("term_added", project=project_id, term=original, locked=is_locked)
        return term

    def add_from_selection(
        self,
        project_id: str,
        original: str,
        translation: str,
        category: str = TermCategory.OTHER.value,
    ) -> Term:
        """Add a term picked from the reader; such terms are locked immediately."""
        return self.add_term(project_id, original, translation, category, is_locked=True)

    def update_term(self, project_id: str, term_id: int, **fields: Any) -> Term:
        """Edit a term. Only the fields given are changed."""
        self._check_term(project_id, term_id)
        if "original" in fields:
            fields["original"] = fields["original"].strip()
            if not fields["original"]:
                raise ValueError("Term original must not be empty")
        return self._store.update_term(term_id, **fields)

    def set_locked(self, project_id: str, term_id: int, locked: bool) -> Term:
        self._check_term(project_id, term_id)
        return self._store.update_term(term_id, is_locked=locked)

    def toggle_lock(self, project_id: str, term_id: int) -> Term:
        term = self._check_term(project_id, term_id)
        return self._store.update_term(term_id, is_locked=not term.is_locked)

    def remove_term(self, project_id: str, term_id: int) -> None:
        self._check_term(project_id, term_id)
        self._store.delete_term(term_id)
        logger.info("term_removed", project=project_id, term_id=term_id)

    def find_term(self, project_id: str, original: str) -> Optional[Term]:
        """Find a term by its original text (case-insensitive)."""
        key = original.strip().casefold()
        for term in self.list_terms(project_id):
            if term.original.casefold() == key:
                return term
        return None

    def export_csv(self, project_id: str) -> str:
        """Export the glossary as CSV text."""
        return terms_to_csv(self.list_terms(project_id))

    def import_csv(self, project_id: str, csv_text: str) -> dict[str, int]:
        """Import terms from CSV text.

        Rows whose original already exists update that term; the rest are
        inserted.

        Returns:
            Dict with ``imported`` and ``updated`` counts.
        """
        existing = {t.original.casefold(): t for t in self.list_terms(project_id)}
        imported = 0
        updated = 0
        for term in terms_from_csv(csv_text, project_id):
            current = existing.get(term.original.casefold())
            if current is not None:
                self._store.update_term(
                    current.id,
                    translation=term.translation,
                    category=term.category,
                    is_locked=term.is_locked,
                )
                updated += 1
            else:
                term.id = self._store.insert_term(term)
                existing[term.original.casefold()] = term
                imported += 1
        logger.info("glossary_imported", project=project_id, imported=imported, updated=updated)
        return {"imported": imported, "updated": updated}
