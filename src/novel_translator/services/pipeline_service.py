"""Pipeline service: manages deep scan and batch translation jobs.

Jobs run as background asyncio tasks and report through the EventBus, so the
web layer only has to forward events. The CLI drives DeepScan and
BatchScheduler directly; both paths share the same run guard semantics.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Optional

import structlog

from novel_translator.config import AppConfig, get_config
from novel_translator.pipeline.batch import (
    BatchProgress,
    BatchRun,
    BatchScheduler,
    InvalidTransitionError,
    ItemResult,
)
from novel_translator.pipeline.extraction import DeepScan, ScanProgress, ScanStatus
from novel_translator.pipeline.guard import RunGuard
from novel_translator.services.events import EventBus, PipelineEvent
from novel_translator.storage import JsonLibraryStore, RecordNotFoundError
from novel_translator.translator.capabilities import (
    DocumentTranslationCapability,
    ExtractorCapability,
    TermTranslationCapability,
)
from novel_translator.translator.engine import GlossaryTranslator

logger = structlog.get_logger()


class JobKind(str, Enum):
    """What a job runs."""

    SCAN = "scan"
    BATCH = "batch"


class JobStatus(str, Enum):
    """Job status as reported to clients."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


FINISHED_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.STOPPED, JobStatus.FAILED})

# Finished jobs kept for GET /jobs; older ones are forgotten
MAX_FINISHED_JOBS = 100


@dataclass
class Capabilities:
    """The three text-generation collaborators used by the pipelines."""

    extractor: ExtractorCapability
    term_translator: TermTranslationCapability
    document_translator: DocumentTranslationCapability


def default_capabilities() -> Capabilities:
    """LLM-backed capabilities configured from the global config."""
    from novel_translator.translator.llm import (
        LLMDocumentTranslator,
        LLMTermExtractor,
        LLMTermTranslator,
    )

    return Capabilities(
        extractor=LLMTermExtractor(),
        term_translator=LLMTermTranslator(),
        document_translator=LLMDocumentTranslator(),
    )


class PipelineService:
    """Start and control scan and batch jobs over a library store.

    Capabilities are created on first use through ``capabilities_factory``
    so that an API server without credentials can still serve the library.
    """

    def __init__(
        self,
        store: JsonLibraryStore,
        event_bus: EventBus,
        capabilities_factory: Optional[Callable[[], Capabilities]] = None,
        config: Optional[AppConfig] = None,
        max_finished_jobs: int = MAX_FINISHED_JOBS,
    ) -> None:
        self._store = store
        self._max_finished_jobs = max_finished_jobs
        self._event_bus = event_bus
        self._capabilities_factory = capabilities_factory or default_capabilities
        self._capabilities: Optional[Capabilities] = None
        self._config = config or get_config()
        self._guard = RunGuard()
        self._translator: Optional[GlossaryTranslator] = None
        self._scheduler: Optional[BatchScheduler] = None
        self._jobs: dict[str, dict[str, Any]] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._runs: dict[str, BatchRun] = {}

    @property
    def guard(self) -> RunGuard:
        return self._guard

    @property
    def capabilities(self) -> Capabilities:
        if self._capabilities is None:
            self._capabilities = self._capabilities_factory()
        return self._capabilities

    @property
    def translator(self) -> GlossaryTranslator:
        """Glossary-aware document translator shared with the batch scheduler."""
        if self._translator is None:
            self._translator = GlossaryTranslator(
                self.capabilities.document_translator, config=self._config.batch
            )
        return self._translator

    @property
    def scheduler(self) -> BatchScheduler:
        if self._scheduler is None:
            self._scheduler = BatchScheduler(
                self.translator,
                self._store,
                self._store,
                config=self._config.batch,
                guard=self._guard,
                event_bus=self._event_bus,
            )
        return self._scheduler

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[dict[str, Any]]:
        """Get job by ID."""
        job = self._jobs.get(job_id)
        if job is not None:
            self._sync_batch_status(job)
        return job

    def require_job(self, job_id: str) -> dict[str, Any]:
        job = self.get_job(job_id)
        if job is None:
            raise RecordNotFoundError(f"Job not found: {job_id}")
        return job

    def list_jobs(self, project_id: Optional[str] = None) -> list[dict[str, Any]]:
        """List jobs, newest first."""
        jobs = [j for j in self._jobs.values() if project_id is None or j["project_id"] == project_id]
        for job in jobs:
            self._sync_batch_status(job)
        return sorted(jobs, key=lambda j: j["created_at"], reverse=True)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def _create_job(self, kind: JobKind, project_id: str) -> dict[str, Any]:
        self._prune_jobs()
        job_id = str(uuid.uuid4())[:8]
        job = {
            "id": job_id,
            "kind": kind,
            "project_id": project_id,
            "status": JobStatus.RUNNING,
            "created_at": time.time(),
            "started_at": time.time(),
            "completed_at": None,
            "progress": {"current": 0, "total": 0, "label": ""},
            "result": None,
            "error": None,
        }
        self._jobs[job_id] = job
        return job

    def _prune_jobs(self) -> None:
        finished = sorted(
            (j for j in self._jobs.values() if j["completed_at"] is not None),
            key=lambda j: j["completed_at"],
        )
        for job in finished[: max(0, len(finished) - self._max_finished_jobs)]:
            del self._jobs[job["id"]]

    def _track(self, job: dict[str, Any], coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro, name=f"{job['kind'].value}-{job['id']}")
        self._tasks[job["id"]] = task
        task.add_done_callback(lambda t: self._on_task_done(job, t))

    def _on_task_done(self, job: dict[str, Any], task: asyncio.Task) -> None:
        """Drop the task handles and finalise a job whose body never ran.

        A task cancelled before its first step skips its own try/finally, so
        the scan guard and the job record are settled here instead.
        """
        self._tasks.pop(job["id"], None)
        run = self._runs.pop(job["id"], None)
        if job["completed_at"] is not None:
            return

        job["status"] = JobStatus.STOPPED
        job["completed_at"] = time.time()
        if job["kind"] == JobKind.SCAN:
            self._guard.release("scan", job["project_id"])
        elif run is not None and not run.is_finished:
            run.stop()
        logger.warning("job_cancelled_before_start", job=job["id"], kind=job["kind"].value)
        self._emit(job["id"], "job_stopped", {})

    async def start_scan(self, project_id: str) -> dict[str, Any]:
        """Start a deep scan of a project as a background task.

        Raises:
            RecordNotFoundError: If the project does not exist.
            RunInProgressError: If the project is already being scanned.
        """
        self._store.get_project(project_id)
        self._guard.acquire("scan", project_id)
        try:
            caps = self.capabilities
        except Exception:
            self._guard.release("scan", project_id)
            raise

        job = self._create_job(JobKind.SCAN, project_id)
        scan = DeepScan(
            caps.extractor,
            caps.term_translator,
            self._store,
            config=self._config.scan,
            event_bus=self._event_bus,
            job_id=job["id"],
        )
        self._emit(job["id"], "job_started", {"kind": JobKind.SCAN.value, "project_id": project_id})
        self._track(job, self._run_scan(job, scan))
        return job

    async def _run_scan(self, job: dict[str, Any], scan: DeepScan) -> None:
        project_id = job["project_id"]

        def on_progress(progress: ScanProgress) -> None:
            job["progress"] = {
                "current": progress.current,
                "total": progress.total,
                "label": progress.label,
            }

        try:
            documents = self._store.list_documents(project_id)
            summary = await scan.run(project_id, documents, on_progress=on_progress)
            job["result"] = summary.model_dump(mode="json")
            if summary.status == ScanStatus.COMPLETE:
                job["status"] = JobStatus.COMPLETED
                self._emit(job["id"], "job_completed", {"result": job["result"]})
            else:
                job["status"] = JobStatus.FAILED
                job["error"] = summary.error
                self._emit(job["id"], "job_failed", {"error": summary.error})
        except asyncio.CancelledError:
            job["status"] = JobStatus.STOPPED
            self._emit(job["id"], "job_stopped", {})
        except Exception as e:
            job["status"] = JobStatus.FAILED
            job["error"] = str(e)
            logger.error("scan_job_failed", job=job["id"], error=str(e))
            self._emit(job["id"], "job_failed", {"error": str(e)})
        finally:
            job["completed_at"] = time.time()
            self._guard.release("scan", project_id)

    async def start_batch(self, project_id: str) -> dict[str, Any]:
        """Start translating a project's untranslated documents.

        Raises:
            RecordNotFoundError: If the project does not exist.
            RunInProgressError: If a batch is already running for the project.
        """
        self._store.get_project(project_id)
        scheduler = self.scheduler
        job = self._create_job(JobKind.BATCH, project_id)
        job_id = job["id"]

        def on_before_item(progress: BatchProgress) -> None:
            job["progress"] = {
                "current": progress.current,
                "total": progress.total,
                "label": progress.label,
            }

        def on_after_item(result: ItemResult) -> None:
            if not result.success:
                job["error"] = result.error

        try:
            run = scheduler.start(
                project_id,
                job_id=job_id,
                on_before_item=on_before_item,
                on_after_item=on_after_item,
            )
        except Exception:
            del self._jobs[job_id]
            raise
        job["progress"]["total"] = run.total
        self._runs[job_id] = run

        self._emit(job_id, "job_started", {"kind": JobKind.BATCH.value, "project_id": project_id})
        self._track(job, self._watch_batch(job, run))
        return job

    async def _watch_batch(self, job: dict[str, Any], run: BatchRun) -> None:
        try:
            summary = await run.wait()
            job["result"] = summary.model_dump(mode="json")
            job["status"] = JobStatus(summary.state.value)
            self._emit(job["id"], f"job_{summary.state.value}", {"result": job["result"]})
        except asyncio.CancelledError:
            job["status"] = JobStatus.STOPPED
            self._emit(job["id"], "job_stopped", {})
        except Exception as e:
            job["status"] = JobStatus.FAILED
            job["error"] = str(e)
            logger.error("batch_job_failed", job=job["id"], error=str(e))
            self._emit(job["id"], "job_failed", {"error": str(e)})
        finally:
            job["completed_at"] = time.time()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def _require_run(self, job_id: str, command: str) -> BatchRun:
        job = self.require_job(job_id)
        if job["kind"] != JobKind.BATCH:
            raise InvalidTransitionError(f"Cannot {command} a {job['kind'].value} job")
        run = self._runs.get(job_id)
        if run is None:
            raise InvalidTransitionError(f"Cannot {command} a {job['status'].value} job")
        return run

    def pause_job(self, job_id: str) -> dict[str, Any]:
        self._require_run(job_id, "pause").pause()
        return self.require_job(job_id)

    def resume_job(self, job_id: str) -> dict[str, Any]:
        self._require_run(job_id, "resume").resume()
        return self.require_job(job_id)

    def stop_job(self, job_id: str) -> dict[str, Any]:
        """Request a stop. Scans are cancelled; batches finish their current document."""
        job = self.require_job(job_id)
        if job["kind"] == JobKind.SCAN:
            task = self._tasks.get(job_id)
            if job["status"] in FINISHED_STATUSES or task is None or task.done():
                raise InvalidTransitionError(f"Cannot stop a {job['status'].value} job")
            task.cancel()
            return job
        self._require_run(job_id, "stop").stop()
        return self.require_job(job_id)

    async def shutdown(self) -> None:
        """Stop live batches and cancel scans, then wait for their tasks."""
        for run in list(self._runs.values()):
            if not run.is_finished:
                run.stop()
        for job_id, task in list(self._tasks.items()):
            if self._jobs[job_id]["kind"] == JobKind.SCAN and not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def _sync_batch_status(self, job: dict[str, Any]) -> None:
        run = self._runs.get(job["id"])
        if run is not None and job["status"] not in FINISHED_STATUSES and not run.is_finished:
            job["status"] = JobStatus(run.state.value)

    def _emit(self, job_id: str, event_type: str, data: dict) -> None:
        """Emit a pipeline event."""
        self._event_bus.emit(PipelineEvent(type=event_type, data=data, job_id=job_id))
