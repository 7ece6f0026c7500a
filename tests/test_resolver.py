"""Tests for candidate resolution against the existing glossary."""

from novel_translator.models import ExtractionCandidate, Term, TermCategory
from novel_translator.translator.resolver import resolve_candidates


def _term(original: str, locked: bool = False) -> Term:
    return Term(project_id="p", original=original, translation=original.upper(), is_locked=locked)


def _cand(original: str, category: TermCategory = TermCategory.OTHER) -> ExtractionCandidate:
    return ExtractionCandidate(original=original, category=category)


class TestResolveCandidates:
    """Set difference, deduplication and ordering."""

    def test_new_candidates_only(self):
        existing = [_term("Li Wei")]
        result = resolve_candidates([_cand("Li Wei"), _cand("Azure Sect")], existing)
        assert [c.original for c in result] == ["Azure Sect"]

    def test_case_insensitive_against_existing(self):
        existing = [_term("Azure Sect")]
        assert resolve_candidates([_cand("azure sect"), _cand("AZURE SECT")], existing) == []

    def test_locked_and_unlocked_terms_both_block(self):
        existing = [_term("Spirit Qi", locked=True), _term("Dao Heart")]
        result = resolve_candidates([_cand("Spirit Qi"), _cand("Dao Heart")], existing)
        assert result == []

    def test_duplicates_keep_first_occurrence(self):
        candidates = [
            _cand("Zhang San", TermCategory.PERSON),
            _cand("Jade Hall", TermCategory.LOCATION),
            _cand("zhang san", TermCategory.OTHER),
        ]
        result = resolve_candidates(candidates, [])
        assert [c.original for c in result] == ["Zhang San", "Jade Hall"]
        assert result[0].category == TermCategory.PERSON

    def test_preserves_input_order(self):
        names = ["C", "A", "B"]
        result = resolve_candidates([_cand(n) for n in names], [])
        assert [c.original for c in result] == names

    def test_empty_inputs(self):
        assert resolve_candidates([], []) == []
        assert resolve_candidates([], [_term("x")]) == []

    def test_empty_originals_dropped(self):
        result = resolve_candidates([_cand(""), _cand("   "), _cand("Real")], [])
        assert [c.original for c in result] == ["Real"]

    def test_whitespace_is_stripped(self):
        result = resolve_candidates([_cand("  灵气 ")], [_term("Other")])
        assert result[0].original == "灵气"

    def test_result_disjoint_from_existing(self):
        existing = [_term(n) for n in ("a", "b", "c")]
        candidates = [_cand(n) for n in ("A", "d", "b", "e", "D")]
        result = resolve_candidates(candidates, existing)
        existing_keys = {t.original.casefold() for t in existing}
        assert all(c.original.casefold() not in existing_keys for c in result)
        assert [c.original for c in result] == ["d", "e"]
