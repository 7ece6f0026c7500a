"""Tests for the deep scan pipeline."""

import pytest

from novel_translator.config import ScanConfig
from novel_translator.models import Document, ExtractionCandidate, Term, TermCategory
from novel_translator.pipeline.extraction import (
    DeepScan,
    ScanStatus,
    build_sample,
    find_context,
)
from novel_translator.pipeline.guard import RunGuard, RunInProgressError
from novel_translator.services.events import EventBus

from conftest import FakeExtractor, FakeTermTranslator, make_documents


def _docs(n: int) -> list[Document]:
    return [Document(project_id="p", order=i, source_text=f"text {i}") for i in range(1, n + 1)]


class TestBuildSample:
    def test_head_middle_tail(self):
        sample = build_sample(_docs(10), head=3, tail=3)
        assert [d.order for d in sample] == [1, 2, 3, 6, 8, 9, 10]

    def test_small_corpus_has_no_duplicates(self):
        sample = build_sample(_docs(4), head=3, tail=3)
        assert [d.order for d in sample] == [1, 2, 3, 4]

    def test_single_document(self):
        assert [d.order for d in build_sample(_docs(1))] == [1]

    def test_empty(self):
        assert build_sample([]) == []

    def test_sorted_by_order(self):
        docs = list(reversed(_docs(5)))
        assert [d.order for d in build_sample(docs, head=1, tail=1)] == [1, 3, 5]


class TestFindContext:
    def test_window_around_first_occurrence(self):
        text = "0123456789TERM0123456789TERM"
        assert find_context(text, "TERM", window=10) == "56789TERM01234"

    def test_clipped_at_edges(self):
        assert find_context("TERM and more", "TERM", window=100) == "TERM and more"

    def test_not_found(self):
        assert find_context("nothing here", "absent") == ""


class TestDeepScan:
    """End-to-end scans with fake capabilities and a real store."""

    @pytest.mark.asyncio
    async def test_single_new_candidate(self, store, project):
        """'Zhang San' appears in three sampled chapters and is stored once, unlocked."""
        texts = [f"filler {i}" for i in range(1, 10)]
        texts[0] = "Zhang San walked into the hall."
        texts[4] = "Later Zhang San rode north."
        texts[8] = "At last zhang san slept."
        docs = make_documents(store, project.id, texts)
        extractor = FakeExtractor(
            [
                ExtractionCandidate(original="Zhang San", category=TermCategory.PERSON),
                ExtractionCandidate(original="Zhang San", category=TermCategory.PERSON),
                ExtractionCandidate(original="zhang san", category=TermCategory.PERSON),
            ]
        )
        term_translator = FakeTermTranslator({"Zhang San": "Zhang the Third"})

        summary = await DeepScan(
            extractor, term_translator, store, config=ScanConfig(context_window=40)
        ).run(project.id, docs)

        assert summary.status == ScanStatus.COMPLETE
        assert summary.inserted == 1
        sample_text = extractor.calls[0][0]
        assert "rode north" in sample_text and "zhang san slept" in sample_text
        terms = store.list_terms(project.id)
        assert len(terms) == 1
        assert terms[0].original == "Zhang San"
        assert terms[0].translation == "Zhang the Third"
        assert terms[0].category == TermCategory.PERSON
        assert terms[0].is_locked is False
        assert len(term_translator.calls) == 1
        term, context = term_translator.calls[0]
        assert term == "Zhang San"
        assert context.startswith("Zhang San walked")
        assert "rode" not in context and "slept" not in context

    @pytest.mark.asyncio
    async def test_existing_terms_untouched(self, store, project):
        docs = make_documents(store, project.id, ["灵气 flows. Old Master speaks."])
        store.insert_term(Term(project_id=project.id, original="灵气", translation="energy", is_locked=True))
        extractor = FakeExtractor(
            [ExtractionCandidate(original="灵气"), ExtractionCandidate(original="Old Master")]
        )
        term_translator = FakeTermTranslator({"Old Master": "The Elder"})

        summary = await DeepScan(extractor, term_translator, store).run(project.id, docs)

        assert summary.new_terms == 1
        by_original = {t.original: t for t in store.list_terms(project.id)}
        assert by_original["灵气"].translation == "energy"
        assert by_original["灵气"].is_locked is True
        assert by_original["Old Master"].translation == "The Elder"

    @pytest.mark.asyncio
    async def test_extractor_failure_means_no_candidates(self, store, project):
        docs = make_documents(store, project.id, ["text"])
        extractor = FakeExtractor(error=TimeoutError("down"))

        summary = await DeepScan(extractor, FakeTermTranslator(), store).run(project.id, docs)

        assert summary.status == ScanStatus.COMPLETE
        assert summary.candidates == 0
        assert store.list_terms(project.id) == []

    @pytest.mark.asyncio
    async def test_term_translation_failure_falls_back_to_original(self, store, project):
        docs = make_documents(store, project.id, ["Jade Hall"])
        extractor = FakeExtractor([ExtractionCandidate(original="Jade Hall")])

        summary = await DeepScan(extractor, FakeTermTranslator(), store).run(project.id, docs)

        assert summary.fallbacks == 1
        assert store.list_terms(project.id)[0].translation == "Jade Hall"

    @pytest.mark.asyncio
    async def test_sample_truncated_to_max_chars(self, store, project):
        docs = make_documents(store, project.id, ["a" * 50, "b" * 50])
        extractor = FakeExtractor()

        await DeepScan(extractor, FakeTermTranslator(), store, config=ScanConfig(max_chars=60)).run(
            project.id, docs
        )

        text, max_chars = extractor.calls[0]
        assert max_chars == 60
        assert len(text) == 60
        assert text.startswith("a" * 50 + "\n\n")

    @pytest.mark.asyncio
    async def test_progress_labels_in_order(self, store, project):
        docs = make_documents(store, project.id, ["A and B"])
        extractor = FakeExtractor([ExtractionCandidate(original="A"), ExtractionCandidate(original="B")])
        labels = []

        await DeepScan(extractor, FakeTermTranslator({"A": "a", "B": "b"}), store).run(
            project.id, docs, on_progress=lambda p: labels.append(p.label)
        )

        assert labels == [
            "sampling",
            "extracting",
            "resolving",
            "translating 1/2",
            "translating 2/2",
            "complete",
        ]

    @pytest.mark.asyncio
    async def test_store_failure_keeps_committed_terms(self, store, project):
        docs = make_documents(store, project.id, ["A B"])
        extractor = FakeExtractor([ExtractionCandidate(original="A"), ExtractionCandidate(original="B")])

        class FailingSecondInsert:
            def __init__(self, inner):
                self.inner = inner
                self.inserts = 0

            def list_terms(self, project_id):
                return self.inner.list_terms(project_id)

            def insert_term(self, term):
                self.inserts += 1
                if self.inserts == 2:
                    raise OSError("disk full")
                return self.inner.insert_term(term)

        events = []
        bus = EventBus()
        bus.subscribe(events.append)
        summary = await DeepScan(
            extractor, FakeTermTranslator({"A": "a", "B": "b"}), FailingSecondInsert(store), event_bus=bus
        ).run(project.id, docs)

        assert summary.status == ScanStatus.FAILED
        assert summary.inserted == 1
        assert "disk full" in summary.error
        assert [t.original for t in store.list_terms(project.id)] == ["A"]
        assert events[-1].type == "scan_failed"

    @pytest.mark.asyncio
    async def test_concurrent_scan_rejected(self, store, project):
        guard = RunGuard()
        guard.acquire("scan", project.id)
        scan = DeepScan(FakeExtractor(), FakeTermTranslator(), store, guard=guard)
        with pytest.raises(RunInProgressError):
            await scan.run(project.id, [])

    @pytest.mark.asyncio
    async def test_guard_released_after_run(self, store, project):
        guard = RunGuard()
        scan = DeepScan(FakeExtractor(), FakeTermTranslator(), store, guard=guard)
        await scan.run(project.id, [])
        assert not guard.is_held("scan", project.id)
