"""Deduplicate extracted candidates against the existing glossary."""

from typing import Iterable

import structlog

from novel_translator.models import ExtractionCandidate, Term

logger = structlog.get_logger()


def resolve_candidates(
    candidates: Iterable[ExtractionCandidate],
    existing_terms: Iterable[Term],
) -> list[ExtractionCandidate]:
    """Return the candidates that are genuinely new for the glossary.

    Comparison is case-insensitive and ignores the lock state of existing
    terms, so no existing entry can be overwritten by an automated pass.
    Input order is preserved; repeated candidates keep the first occurrence
    (and its category). Candidates with an empty ``original`` are dropped.

    Args:
        candidates: Raw candidates from the extractor
        existing_terms: Terms already stored for the project

    Returns:
        New, unique candidates with stripped originals
    """
    seen = {term.original.strip().casefold() for term in existing_terms if term.original}

    resolved: list[ExtractionCandidate] = []
    dropped = 0
    for candidate in candidates:
        original = (candidate.original or "").strip()
        if not original:
            dropped += 1
            continue
        key = original.casefold()
        if key in seen:
            continue
        seen.add(key)
        resolved.append(ExtractionCandidate(original=original, category=candidate.category))

    if dropped:
        logger.debug("candidates_dropped_empty", count=dropped)
    return resolved
