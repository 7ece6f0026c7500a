"""Glossary formatting and CSV exchange."""

import csv
import io
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from novel_translator.models import Term, TermCategory

CSV_FIELDS = ["original", "translation", "category", "is_locked"]


class GlossaryMapping(BaseModel):
    """One mandatory ``original -> translation`` rule sent with a document."""

    original: str = Field(description="Source term")
    translation: str = Field(description="Required rendering")


def build_glossary_mapping(terms: Iterable[Term]) -> list[GlossaryMapping]:
    """Turn glossary terms into the ordered mapping for a translation request.

    Terms without a translation yet carry no rule and are skipped.
    """
    return [
        GlossaryMapping(original=term.original, translation=term.translation)
        for term in terms
        if term.original and term.translation
    ]


def format_glossary_mapping(mapping: Iterable[GlossaryMapping]) -> str:
    """Format mapping rules for an LLM prompt, one ``original -> translation`` per line."""
    return "\n".join(f"{rule.original} -> {rule.translation}" for rule in mapping)


def search_terms(terms: Iterable[Term], query: Optional[str]) -> list[Term]:
    """Filter terms whose original or translation contains ``query`` (case-insensitive)."""
    if not query:
        return list(terms)
    needle = query.casefold()
    return [
        t for t in terms if needle in t.original.casefold() or needle in t.translation.casefold()
    ]


def terms_to_csv(terms: Iterable[Term]) -> str:
    """Export terms as CSV text."""
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=CSV_FIELDS)
    writer.writeheader()
    for term in terms:
        writer.writerow(
            {
                "original": term.original,
                "translation": term.translation,
                "category": term.category.value,
                "is_locked": "true" if term.is_locked else "false",
            }
        )
    return output.getvalue()


def terms_from_csv(csv_text: str, project_id: str) -> list[Term]:
    """Parse CSV text into unsaved terms.

    Rows without an ``original`` value are skipped. Missing ``is_locked``
    means locked, since imported entries are user-curated.
    """
    reader = csv.DictReader(io.StringIO(csv_text))
    terms: list[Term] = []
    for row in reader:
        original = (row.get("original") or "").strip()
        if not original:
            continue
        locked = (row.get("is_locked") or "true").strip().lower() not in ("false", "0", "no")
        terms.append(
            Term(
                project_id=project_id,
                original=original,
                translation=(row.get("translation") or "").strip(),
                category=TermCategory.parse(row.get("category")),
                is_locked=locked,
            )
        )
    return terms
