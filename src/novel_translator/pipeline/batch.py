"""Sequential, pausable batch translation over a project's untranslated documents."""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from novel_translator.config import BatchConfig, get_config
from novel_translator.log import run_context
from novel_translator.models import Document, Term
from novel_translator.pipeline.guard import RunGuard
from novel_translator.services.events import EventBus, PipelineEvent
from novel_translator.storage import DocumentStore, GlossaryStore
from novel_translator.translator.engine import GlossaryTranslator

logger = structlog.get_logger()


class BatchState(str, Enum):
    """Batch run state."""

    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"


TERMINAL_STATES = frozenset({BatchState.STOPPED, BatchState.COMPLETED})


class InvalidTransitionError(ValueError):
    """Raised on a control command a run cannot accept in its current state."""


class BatchProgress(BaseModel):
    """Emitted before each document is translated."""

    current: int = Field(description="1-based position in the queue")
    total: int
    label: str
    document_id: Optional[int] = None


class ItemResult(BaseModel):
    """Outcome of one queued document."""

    current: int
    document_id: Optional[int] = None
    label: str = ""
    success: bool
    error: Optional[str] = None


class BatchSummary(BaseModel):
    """Counts reported when a run finishes (or on demand while it runs)."""

    project_id: str
    state: BatchState
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    remaining: int = 0
    errors: list[str] = Field(default_factory=list)


class BatchRun:
    """One execution over a snapshot of untranslated documents.

    Control commands (pause, resume, stop) only change state on this object;
    the loop reads that state each time it checks, so a command issued at any
    point is seen at the next check. Stop is non-preemptive: a document that
    is already being translated finishes (and is saved) first.
    """

    def __init__(
        self,
        project_id: str,
        queue: Sequence[Document],
        glossary: Sequence[Term],
        translator: GlossaryTranslator,
        document_store: DocumentStore,
        config: Optional[BatchConfig] = None,
        event_bus: Optional[EventBus] = None,
        job_id: Optional[str] = None,
        on_before_item: Optional[Callable[[BatchProgress], None]] = None,
        on_after_item: Optional[Callable[[ItemResult], None]] = None,
    ):
        self.project_id = project_id
        self.queue: tuple[Document, ...] = tuple(queue)
        self.glossary: tuple[Term, ...] = tuple(glossary)
        self.translator = translator
        self.document_store = document_store
        self.config = config or get_config().batch
        self.event_bus = event_bus
        self.job_id = job_id
        self.on_before_item = on_before_item
        self.on_after_item = on_after_item

        self.cursor = 0
        self.current_label = ""
        self.succeeded = 0
        self.failed = 0
        self.errors: list[str] = []
        self.task: Optional[asyncio.Task] = None

        self._state = BatchState.RUNNING
        self._stop_requested = False
        self._stop_event = asyncio.Event()
        self._started = False

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def total(self) -> int:
        return len(self.queue)

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def is_finished(self) -> bool:
        return self._state in TERMINAL_STATES

    def pause(self) -> None:
        """Pause before the next document. No-op if already paused."""
        self._check_live("pause")
        if self._state == BatchState.PAUSED:
            return
        self._state = BatchState.PAUSED
        logger.info("batch_paused", project=self.project_id, cursor=self.cursor)
        self._emit("batch_paused", {"current": self.cursor + 1, "total": self.total})

    def resume(self) -> None:
        """Resume a paused run. No-op if already running."""
        self._check_live("resume")
        if self._state == BatchState.RUNNING:
            return
        self._state = BatchState.RUNNING
        logger.info("batch_resumed", project=self.project_id, cursor=self.cursor)
        self._emit("batch_resumed", {"current": self.cursor + 1, "total": self.total})

    def stop(self) -> None:
        """Request cancellation; honoured before the next document or within one poll."""
        self._check_live("stop")
        if self._stop_requested:
            return
        self._stop_requested = True
        self._stop_event.set()
        logger.info("batch_stop_requested", project=self.project_id, cursor=self.cursor)
        self._emit("batch_stop_requested", {"current": self.cursor + 1, "total": self.total})

    def abandon(self) -> None:
        """Mark a run whose task was cancelled before it started as stopped."""
        if self._started or self.is_finished:
            return
        self._state = BatchState.STOPPED
        logger.warning("batch_cancelled_before_start", project=self.project_id)
        self._emit("batch_stopped", self.summary().model_dump(mode="json"))

    def _check_live(self, command: str) -> None:
        if self._state in TERMINAL_STATES:
            raise InvalidTransitionError(f"Cannot {command} a {self._state.value} run")

    async def wait(self) -> BatchSummary:
        """Wait for a run started with ``BatchScheduler.start``."""
        if self.task is None:
            raise RuntimeError("Run was not started in the background")
        return await self.task

    def summary(self) -> BatchSummary:
        processed = self.succeeded + self.failed
        return BatchSummary(
            project_id=self.project_id,
            state=self._state,
            total=self.total,
            succeeded=self.succeeded,
            failed=self.failed,
            remaining=self.total - processed,
            errors=list(self.errors),
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def execute(self) -> BatchSummary:
        """Process the queue in order. Never raises for per-item failures."""
        if self._started:
            raise InvalidTransitionError("A batch run can only be executed once")
        self._started = True

        logger.info("batch_start", project=self.project_id, total=self.total, glossary=len(self.glossary))
        self._emit("batch_started", {"total": self.total, "glossary_terms": len(self.glossary)})

        try:
            for index, document in enumerate(self.queue):
                self.cursor = index
                if self._stop_requested:
                    break
                if not await self._wait_while_paused():
                    break

                progress = BatchProgress(
                    current=index + 1,
                    total=self.total,
                    label=document.label,
                    document_id=document.id,
                )
                self.current_label = progress.label
                self._notify(self.on_before_item, progress)
                self._emit("batch_progress", progress.model_dump())

                result = await self._process(index, document)
                self._notify(self.on_after_item, result)
                self._emit(
                    "batch_item_completed" if result.success else "batch_item_failed",
                    result.model_dump(),
                )

                if index < self.total - 1:
                    await self._cooldown()
            else:
                self.cursor = self.total
        except asyncio.CancelledError:
            self._state = BatchState.STOPPED
            logger.warning("batch_cancelled", project=self.project_id, cursor=self.cursor)
            self._emit("batch_stopped", self.summary().model_dump(mode="json"))
            raise

        self._state = BatchState.STOPPED if self._stop_requested else BatchState.COMPLETED
        summary = self.summary()
        logger.info(
            "batch_complete" if self._state == BatchState.COMPLETED else "batch_stopped",
            project=self.project_id,
            succeeded=summary.succeeded,
            failed=summary.failed,
            remaining=summary.remaining,
        )
        self._emit(f"batch_{self._state.value}", summary.model_dump(mode="json"))
        return summary

    async def _wait_while_paused(self) -> bool:
        """Block while paused. Returns False if a stop arrives meanwhile."""
        poll_seconds = self.config.poll_interval_ms / 1000
        while self._state == BatchState.PAUSED:
            if self._stop_requested:
                return False
            await asyncio.sleep(poll_seconds)
        return not self._stop_requested

    async def _cooldown(self) -> None:
        """Rate-limit delay between documents, cut short by a stop request."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.cooldown_ms / 1000)
        except asyncio.TimeoutError:
            pass

    async def _process(self, index: int, document: Document) -> ItemResult:
        """Translate and persist one document, turning every failure into a result."""
        label = document.label
        if document.id is None:
            return self._record_failure(index, document, "Document has no id")

        try:
            outcome = await self.translator.translate(document, self.glossary)
        except Exception as e:
            return self._record_failure(index, document, str(e))
        if not outcome.ok:
            return self._record_failure(index, document, outcome.error or "Translation failed")

        try:
            self.document_store.update_document(
                document.id,
                translated_text=outcome.text,
                last_translated_at=datetime.now(),
            )
        except Exception as e:
            return self._record_failure(index, document, f"Could not save translation: {e}")

        self.succeeded += 1
        logger.info(
            "document_translated",
            project=self.project_id,
            document=document.id,
            current=index + 1,
            total=self.total,
        )
        return ItemResult(current=index + 1, document_id=document.id, label=label, success=True)

    def _record_failure(self, index: int, document: Document, error: str) -> ItemResult:
        self.failed += 1
        self.errors.append(f"{document.label}: {error}")
        logger.error(
            "document_translate_error",
            project=self.project_id,
            document=document.id,
            current=index + 1,
            error=error,
        )
        return ItemResult(
            current=index + 1,
            document_id=document.id,
            label=document.label,
            success=False,
            error=error,
        )

    def _notify(self, hook: Optional[Callable], payload: BaseModel) -> None:
        if hook is None:
            return
        try:
            hook(payload)
        except Exception as e:
            logger.warning("batch_hook_failed", error=str(e))

    def _emit(self, event_type: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(
                PipelineEvent(
                    type=event_type,
                    data={"project_id": self.project_id, **data},
                    job_id=self.job_id,
                )
            )


class BatchScheduler:
    """Create batch runs, at most one live run per project."""

    def __init__(
        self,
        translator: GlossaryTranslator,
        document_store: DocumentStore,
        glossary_store: GlossaryStore,
        config: Optional[BatchConfig] = None,
        guard: Optional[RunGuard] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.translator = translator
        self.document_store = document_store
        self.glossary_store = glossary_store
        self.config = config or get_config().batch
        self.guard = guard or RunGuard()
        self.event_bus = event_bus
        self._runs: dict[str, BatchRun] = {}

    def active_run(self, project_id: str) -> Optional[BatchRun]:
        """The live run for a project, if any."""
        return self._runs.get(project_id)

    def start(
        self,
        project_id: str,
        documents: Optional[Sequence[Document]] = None,
        job_id: Optional[str] = None,
        on_before_item: Optional[Callable[[BatchProgress], None]] = None,
        on_after_item: Optional[Callable[[ItemResult], None]] = None,
    ) -> BatchRun:
        """Start a run as a background task and return its handle.

        Must be called from a running event loop.

        Raises:
            RunInProgressError: If the project already has a live run.
        """
        run = self._create_run(project_id, documents, job_id, on_before_item, on_after_item)
        run.task = asyncio.create_task(self._drive(run), name=f"batch-{project_id}")
        # A task cancelled before its first step never enters _drive
        run.task.add_done_callback(lambda _task: self._finish(run))
        return run

    async def run(
        self,
        project_id: str,
        documents: Optional[Sequence[Document]] = None,
        job_id: Optional[str] = None,
        on_before_item: Optional[Callable[[BatchProgress], None]] = None,
        on_after_item: Optional[Callable[[ItemResult], None]] = None,
    ) -> BatchSummary:
        """Run to completion in the current task."""
        run = self._create_run(project_id, documents, job_id, on_before_item, on_after_item)
        return await self._drive(run)

    def _create_run(
        self,
        project_id: str,
        documents: Optional[Sequence[Document]],
        job_id: Optional[str],
        on_before_item: Optional[Callable[[BatchProgress], None]],
        on_after_item: Optional[Callable[[ItemResult], None]],
    ) -> BatchRun:
        self.guard.acquire("batch", project_id)
        try:
            if documents is None:
                documents = self.document_store.list_documents(project_id)
            # Snapshot: documents added after this point belong to a later run
            queue = sorted((d for d in documents if not d.is_translated), key=lambda d: d.order)
            glossary = self.glossary_store.list_terms(project_id)
        except Exception:
            self.guard.release("batch", project_id)
            raise

        run = BatchRun(
            project_id=project_id,
            queue=queue,
            glossary=glossary,
            translator=self.translator,
            document_store=self.document_store,
            config=self.config,
            event_bus=self.event_bus,
            job_id=job_id,
            on_before_item=on_before_item,
            on_after_item=on_after_item,
        )
        self._runs[project_id] = run
        return run

    async def _drive(self, run: BatchRun) -> BatchSummary:
        try:
            with run_context(run.project_id, run.job_id, "batch"):
                return await run.execute()
        finally:
            self._finish(run)

    def _finish(self, run: BatchRun) -> None:
        if self._runs.get(run.project_id) is not run:
            return
        del self._runs[run.project_id]
        self.guard.release("batch", run.project_id)
        run.abandon()
