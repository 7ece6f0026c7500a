"""Deep scan: one-shot glossary extraction over a sample of the corpus."""

from enum import Enum
from typing import Callable, Optional, Sequence

import structlog
from pydantic import BaseModel

from novel_translator.config import ScanConfig, get_config
from novel_translator.log import run_context
from novel_translator.models import Document, ExtractionCandidate, Term
from novel_translator.pipeline.guard import RunGuard
from novel_translator.services.events import EventBus, PipelineEvent
from novel_translator.storage import GlossaryStore
from novel_translator.translator.capabilities import (
    ExtractorCapability,
    TermTranslationCapability,
)
from novel_translator.translator.resolver import resolve_candidates

logger = structlog.get_logger()


class ScanStatus(str, Enum):
    """Terminal state of a deep scan."""

    COMPLETE = "complete"
    FAILED = "failed"


class ScanProgress(BaseModel):
    """Progress report sent to observers."""

    stage: str
    label: str
    current: int = 0
    total: int = 0


class ScanSummary(BaseModel):
    """Result of a deep scan."""

    project_id: str
    status: ScanStatus = ScanStatus.COMPLETE
    sampled: int = 0
    candidates: int = 0
    new_terms: int = 0
    inserted: int = 0
    fallbacks: int = 0
    error: Optional[str] = None


def build_sample(documents: Sequence[Document], head: int = 3, tail: int = 3) -> list[Document]:
    """Pick the first ``head``, the middle and the last ``tail`` documents.

    Documents are ordered by ``order``; a document picked twice appears once,
    in its first position.
    """
    ordered = sorted(documents, key=lambda d: d.order)
    if not ordered:
        return []

    picks = ordered[:head] + [ordered[len(ordered) // 2]]
    if tail > 0:
        picks += ordered[-tail:]

    seen: set[int] = set()
    sample = []
    for doc in picks:
        if id(doc) in seen:
            continue
        seen.add(id(doc))
        sample.append(doc)
    return sample


def find_context(text: str, term: str, window: int = 100) -> str:
    """Return the text around the first occurrence of ``term``.

    Up to ``window // 2`` characters are kept on each side of the term.
    Returns an empty string when the term does not occur.
    """
    idx = text.find(term)
    if idx < 0:
        return ""
    radius = window // 2
    start = max(0, idx - radius)
    end = min(len(text), idx + len(term) + radius)
    return text[start:end]


class DeepScan:
    """Extract, deduplicate and translate new glossary terms for a project.

    Term translations run one at a time to respect the rate limits of the
    translation service. Terms are inserted as soon as they are resolved, so a
    failure part-way keeps the terms already committed.
    """

    def __init__(
        self,
        extractor: ExtractorCapability,
        term_translator: TermTranslationCapability,
        glossary_store: GlossaryStore,
        config: Optional[ScanConfig] = None,
        guard: Optional[RunGuard] = None,
        event_bus: Optional[EventBus] = None,
        job_id: Optional[str] = None,
    ):
        self.extractor = extractor
        self.term_translator = term_translator
        self.glossary_store = glossary_store
        self.config = config or get_config().scan
        self.guard = guard
        self.event_bus = event_bus
        self.job_id = job_id

    async def run(
        self,
        project_id: str,
        documents: Sequence[Document],
        on_progress: Optional[Callable[[ScanProgress], None]] = None,
    ) -> ScanSummary:
        """Run the scan.

        Raises:
            RunInProgressError: If a scan of the same project is already running.
        """
        with run_context(project_id, self.job_id, "scan"):
            if self.guard is None:
                return await self._run(project_id, documents, on_progress)
            with self.guard.hold("scan", project_id):
                return await self._run(project_id, documents, on_progress)

    async def _run(
        self,
        project_id: str,
        documents: Sequence[Document],
        on_progress: Optional[Callable[[ScanProgress], None]],
    ) -> ScanSummary:
        summary = ScanSummary(project_id=project_id)

        def report(stage: str, label: str, current: int = 0, total: int = 0) -> None:
            progress = ScanProgress(stage=stage, label=label, current=current, total=total)
            if on_progress is not None:
                try:
                    on_progress(progress)
                except Exception as e:
                    logger.warning("scan_observer_failed", error=str(e))
            self._emit("scan_progress", progress.model_dump())

        logger.info("scan_start", project=project_id, documents=len(documents))
        report("sampling", "sampling")

        sample_docs = build_sample(documents, self.config.head_count, self.config.tail_count)
        summary.sampled = len(sample_docs)
        sample_text = self.config.separator.join(d.source_text for d in sample_docs)

        try:
            if sample_text.strip():
                report("extracting", "extracting")
                candidates = await self._extract(sample_text)
            else:
                candidates = []
            summary.candidates = len(candidates)

            report("resolving", "resolving")
            existing = self.glossary_store.list_terms(project_id)
            new_candidates = resolve_candidates(candidates, existing)
            summary.new_terms = len(new_candidates)
            logger.info(
                "scan_candidates",
                project=project_id,
                candidates=len(candidates),
                new=len(new_candidates),
            )

            total = len(new_candidates)
            for i, candidate in enumerate(new_candidates, start=1):
                report("translating", f"translating {i}/{total}", i, total)
                translation = await self._translate_term(candidate, sample_text)
                if translation is None:
                    translation = candidate.original
                    summary.fallbacks += 1
                self.glossary_store.insert_term(
                    Term(
                        project_id=project_id,
                        original=candidate.original,
                        translation=translation,
                        category=candidate.category,
                        is_locked=False,
                    )
                )
                summary.inserted += 1

        except Exception as e:
            summary.status = ScanStatus.FAILED
            summary.error = str(e)
            logger.error("scan_failed", project=project_id, error=str(e), inserted=summary.inserted)
            report("failed", "failed")
            self._emit("scan_failed", summary.model_dump(mode="json"))
            return summary

        logger.info(
            "scan_complete",
            project=project_id,
            inserted=summary.inserted,
            fallbacks=summary.fallbacks,
        )
        report("complete", "complete")
        self._emit("scan_completed", summary.model_dump(mode="json"))
        return summary

    async def _extract(self, sample_text: str) -> list[ExtractionCandidate]:
        """Call the extractor on the truncated sample, failing closed."""
        max_chars = self.config.max_chars
        if len(sample_text) > max_chars:
            logger.debug("scan_sample_truncated", chars=len(sample_text), max_chars=max_chars)
        try:
            candidates = await self.extractor.extract(sample_text[:max_chars], max_chars)
        except Exception as e:
            logger.error("extraction_failed", error=str(e))
            return []
        if not isinstance(candidates, list):
            logger.warning("extraction_malformed", type=type(candidates).__name__)
            return []
        return [c for c in candidates if isinstance(c, ExtractionCandidate)]

    async def _translate_term(self, candidate: ExtractionCandidate, sample_text: str) -> Optional[str]:
        """Translate one term; None means the caller should fall back to the original."""
        context = find_context(sample_text, candidate.original, self.config.context_window)
        try:
            translation = await self.term_translator.translate(candidate.original, context)
        except Exception as e:
            logger.warning("term_translation_failed", term=candidate.original, error=str(e))
            return None
        if not isinstance(translation, str) or not translation.strip():
            logger.warning("term_translation_empty", term=candidate.original)
            return None
        return translation.strip()

    def _emit(self, event_type: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(PipelineEvent(type=event_type, data=data, job_id=self.job_id))
