"""Tests for the batch translation scheduler."""

import asyncio

import pytest

from novel_translator.models import Term
from novel_translator.pipeline.batch import (
    BatchScheduler,
    BatchState,
    InvalidTransitionError,
)
from novel_translator.pipeline.guard import RunGuard, RunInProgressError
from novel_translator.services.events import EventBus
from novel_translator.translator.engine import GlossaryTranslator

from conftest import FakeDocumentTranslator, make_documents


def _scheduler(store, config, capability=None, event_bus=None, guard=None) -> BatchScheduler:
    translator = GlossaryTranslator(capability or FakeDocumentTranslator(), config=config)
    return BatchScheduler(translator, store, store, config=config, guard=guard, event_bus=event_bus)


class TestBatchRun:
    @pytest.mark.asyncio
    async def test_completes_all_documents_in_order(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["one", "two", "three", "four"])
        progress = []

        summary = await _scheduler(store, fast_batch_config).run(
            project.id, on_before_item=progress.append
        )

        assert summary.state == BatchState.COMPLETED
        assert summary.succeeded == 4
        assert summary.remaining == 0
        assert [p.current for p in progress] == [1, 2, 3, 4]
        assert all(p.total == 4 for p in progress)
        assert [p.label for p in progress] == ["Chapter 1", "Chapter 2", "Chapter 3", "Chapter 4"]
        for doc in store.list_documents(project.id):
            assert doc.translated_text == f"[T] {doc.source_text}"
            assert doc.last_translated_at is not None

    @pytest.mark.asyncio
    async def test_glossary_applied(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["灵气 rises"])
        store.insert_term(Term(project_id=project.id, original="灵气", translation="energy"))

        await _scheduler(store, fast_batch_config).run(project.id)

        assert "energy" in store.list_documents(project.id)[0].translated_text

    @pytest.mark.asyncio
    async def test_skips_translated_documents(self, store, project, fast_batch_config):
        docs = make_documents(store, project.id, ["one", "two"])
        store.update_document(docs[0].id, translated_text="done")
        capability = FakeDocumentTranslator()

        summary = await _scheduler(store, fast_batch_config, capability).run(project.id)

        assert summary.total == 1
        assert [text for text, _ in capability.calls] == ["two"]
        assert store.get_document(docs[0].id).translated_text == "done"

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["one", "two"])
        scheduler = _scheduler(store, fast_batch_config)
        await scheduler.run(project.id)
        summary = await scheduler.run(project.id)
        assert summary.total == 0
        assert summary.state == BatchState.COMPLETED

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["one", "bad", "three"])
        capability = FakeDocumentTranslator(fail_on={"bad"})

        summary = await _scheduler(store, fast_batch_config, capability).run(project.id)

        assert summary.state == BatchState.COMPLETED
        assert summary.succeeded == 2
        assert summary.failed == 1
        assert "Chapter 2" in summary.errors[0]
        translated = [d.translated_text for d in store.list_documents(project.id)]
        assert translated == ["[T] one", None, "[T] three"]

    @pytest.mark.asyncio
    async def test_deleted_document_counts_as_failure(self, store, project, fast_batch_config):
        docs = make_documents(store, project.id, ["one", "two"])
        scheduler = _scheduler(store, fast_batch_config)
        snapshot = store.list_documents(project.id)
        store.delete_project(project.id)

        summary = await scheduler.run(project.id, documents=snapshot)

        assert summary.failed == 2
        assert summary.state == BatchState.COMPLETED
        assert len(docs) == 2

    @pytest.mark.asyncio
    async def test_stop_after_item_k(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1", "d2", "d3", "d4", "d5"])
        scheduler = _scheduler(store, fast_batch_config)
        holder = {}

        def after_item(result):
            if result.current == 2:
                holder["run"].stop()

        holder["run"] = scheduler.start(project.id, on_after_item=after_item)
        summary = await holder["run"].wait()

        assert summary.state == BatchState.STOPPED
        assert summary.succeeded == 2
        assert summary.remaining == 3
        translated = [d.translated_text for d in store.list_documents(project.id)]
        assert translated == ["[T] d1", "[T] d2", None, None, None]

    @pytest.mark.asyncio
    async def test_stop_during_item_lets_it_finish(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1", "d2", "d3"])
        holder = {}
        capability = FakeDocumentTranslator(on_call=lambda n: holder["run"].stop() if n == 1 else None)

        holder["run"] = _scheduler(store, fast_batch_config, capability).start(project.id)
        summary = await holder["run"].wait()

        assert summary.succeeded == 1
        assert summary.state == BatchState.STOPPED
        assert len(capability.calls) == 1

    @pytest.mark.asyncio
    async def test_stop_interrupts_cooldown(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1", "d2"])
        config = fast_batch_config.model_copy(update={"cooldown_ms": 60_000})
        run = _scheduler(store, config).start(project.id, on_after_item=lambda r: None)

        await asyncio.sleep(0.05)
        run.stop()
        summary = await asyncio.wait_for(run.wait(), timeout=2)

        assert summary.succeeded == 1
        assert summary.state == BatchState.STOPPED

    @pytest.mark.asyncio
    async def test_pause_resume_matches_uninterrupted_run(self, store, project, fast_batch_config):
        texts = ["d1", "d2", "d3", "d4"]
        make_documents(store, project.id, texts)
        holder = {}
        states = []

        def after_item(result):
            if result.current == 2:
                holder["run"].pause()

        holder["run"] = _scheduler(store, fast_batch_config).start(project.id, on_after_item=after_item)
        run = holder["run"]
        while run.state != BatchState.PAUSED:
            await asyncio.sleep(0.005)
        await asyncio.sleep(0.05)
        states.append(run.state)
        translated_while_paused = sum(1 for d in store.list_documents(project.id) if d.is_translated)
        run.resume()
        summary = await run.wait()

        assert states == [BatchState.PAUSED]
        assert translated_while_paused == 2
        assert summary.state == BatchState.COMPLETED
        assert [d.translated_text for d in store.list_documents(project.id)] == [
            f"[T] {t}" for t in texts
        ]

    @pytest.mark.asyncio
    async def test_stop_while_paused(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1", "d2"])
        holder = {}
        holder["run"] = _scheduler(store, fast_batch_config).start(
            project.id, on_after_item=lambda r: holder["run"].pause()
        )
        run = holder["run"]
        while run.state != BatchState.PAUSED:
            await asyncio.sleep(0.005)

        run.stop()
        summary = await asyncio.wait_for(run.wait(), timeout=2)

        assert summary.state == BatchState.STOPPED
        assert summary.remaining == 1

    @pytest.mark.asyncio
    async def test_terminal_states_reject_commands(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1"])
        run = _scheduler(store, fast_batch_config).start(project.id)
        await run.wait()

        assert run.state == BatchState.COMPLETED
        for command in (run.pause, run.resume, run.stop):
            with pytest.raises(InvalidTransitionError):
                command()

    @pytest.mark.asyncio
    async def test_pause_and_resume_are_idempotent(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1"])
        config = fast_batch_config.model_copy(update={"poll_interval_ms": 1})
        run = _scheduler(store, config).start(project.id)
        run.resume()
        run.pause()
        run.pause()
        assert run.state == BatchState.PAUSED
        run.resume()
        await run.wait()
        assert run.state == BatchState.COMPLETED

    @pytest.mark.asyncio
    async def test_second_start_for_project_rejected(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1", "d2"])
        guard = RunGuard()
        scheduler = _scheduler(store, fast_batch_config, guard=guard)

        run = scheduler.start(project.id)
        with pytest.raises(RunInProgressError):
            scheduler.start(project.id)
        assert scheduler.active_run(project.id) is run

        await run.wait()
        assert not guard.is_held("batch", project.id)
        assert scheduler.active_run(project.id) is None

    @pytest.mark.asyncio
    async def test_events_emitted(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1", "bad"])
        bus = EventBus()
        events = []
        bus.subscribe(events.append)

        await _scheduler(
            store, fast_batch_config, FakeDocumentTranslator(fail_on={"bad"}), event_bus=bus
        ).run(project.id, job_id="job-1")

        types = [e.type for e in events]
        assert types == [
            "batch_started",
            "batch_progress",
            "batch_item_completed",
            "batch_progress",
            "batch_item_failed",
            "batch_completed",
        ]
        assert all(e.job_id == "job-1" for e in events)
        assert events[-1].data["succeeded"] == 1

    @pytest.mark.asyncio
    async def test_cancel_before_first_step_releases_project(self, store, project, fast_batch_config):
        make_documents(store, project.id, ["d1", "d2"])
        guard = RunGuard()
        bus = EventBus()
        events = []
        bus.subscribe(events.append)
        scheduler = _scheduler(store, fast_batch_config, guard=guard, event_bus=bus)

        run = scheduler.start(project.id)
        run.task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run.wait()
        await asyncio.sleep(0)

        assert run.state == BatchState.STOPPED
        assert not guard.is_held("batch", project.id)
        assert scheduler.active_run(project.id) is None
        assert [e.type for e in events] == ["batch_stopped"]
        assert events[0].data["remaining"] == 2

        summary = await scheduler.run(project.id)
        assert summary.succeeded == 2
