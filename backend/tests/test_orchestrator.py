"""
Unit tests for the task orchestrator: validation, the synchronous path,
background tasks, deadlines and the retention sweep.

Backends are in-memory stubs (see conftest.py).
"""
import asyncio
from dataclasses import replace

import pytest

from dispatcher.services.errors import GENERIC_ERROR_MESSAGE, DispatchError, ErrorKind
from dispatcher.services.orchestration import (
    FALLBACK_NOTICE,
    TaskNotFoundError,
    TaskOrchestrator,
    TaskStatus,
    TaskStore,
)
from dispatcher.services.routing import Backend

AGENTIC_PROMPT = "Build me a 5-year financial model with sensitivity analysis"


async def wait_until_terminal(orchestrator, task_id, attempts: int = 200):
    for _ in range(attempts):
        task = orchestrator.get_task(task_id)
        if task.is_terminal:
            return task
        await asyncio.sleep(0.01)
    raise AssertionError(f"task {task_id} never reached a terminal state")


class TestValidation:
    @pytest.mark.parametrize("prompt", [None, "", "   \n\t", 42, ["hi"]])
    def test_rejects_missing_blank_and_non_string(self, orchestrator, prompt):
        with pytest.raises(DispatchError) as exc_info:
            orchestrator.validate_prompt(prompt)

        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.http_status == 400
        assert exc_info.value.user_message == "Prompt must be a non-empty string."

    def test_rejects_over_length(self, orchestrator, isolated_settings):
        orchestrator.settings = replace(isolated_settings, max_prompt_chars=10)

        with pytest.raises(DispatchError) as exc_info:
            orchestrator.validate_prompt("x" * 11)

        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.user_message == "Prompt must be at most 10 characters."

    def test_accepts_prompt_at_limit(self, orchestrator, isolated_settings):
        orchestrator.settings = replace(isolated_settings, max_prompt_chars=10)
        assert orchestrator.validate_prompt("x" * 10) == "x" * 10


class TestSynchronousPath:
    @pytest.mark.asyncio
    async def test_greeting_answered_by_fast(self, orchestrator, fast_stub, agentic_stub):
        outcome = await orchestrator.submit("hi")

        assert outcome.backend_used == Backend.FAST
        assert outcome.decision.confidence > 0
        assert fast_stub.calls == ["hi"]
        assert agentic_stub.calls == []

    @pytest.mark.asyncio
    async def test_sync_path_uses_sync_poll_budget(self, orchestrator, agentic_stub, isolated_settings):
        outcome = await orchestrator.submit(AGENTIC_PROMPT)

        assert outcome.backend_used == Backend.AGENTIC
        assert agentic_stub.max_waits == [isolated_settings.manus_max_wait_seconds]

    @pytest.mark.asyncio
    async def test_validation_happens_before_any_backend(self, orchestrator, fast_stub, agentic_stub):
        with pytest.raises(DispatchError):
            await orchestrator.submit("  ")

        assert fast_stub.calls == [] and agentic_stub.calls == []


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_task_completes_in_background(self, orchestrator, agentic_stub, isolated_settings):
        task_id = orchestrator.create_task(AGENTIC_PROMPT)

        assert orchestrator.get_task(task_id).status in (TaskStatus.PENDING, TaskStatus.PROCESSING)

        task = await wait_until_terminal(orchestrator, task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == "agentic answer"
        assert task.backend_used == "agentic"
        assert agentic_stub.max_waits == [isolated_settings.manus_async_max_wait_seconds]

    @pytest.mark.asyncio
    async def test_background_credits_fallback(self, orchestrator, agentic_stub):
        agentic_stub.error = DispatchError(ErrorKind.CREDITS_EXCEEDED)

        task_id = orchestrator.create_task(AGENTIC_PROMPT)
        task = await wait_until_terminal(orchestrator, task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.result == FALLBACK_NOTICE + "fast answer"
        assert task.backend_used == "fast"

    @pytest.mark.asyncio
    async def test_background_failure_stores_sanitized_message(self, orchestrator, agentic_stub):
        agentic_stub.error = DispatchError(
            ErrorKind.TASK_FAILED,
            "task t-1 failed: stack trace here",
            user_message="I attempted to build it but encountered an issue.",
            backend="agentic",
        )

        task_id = orchestrator.create_task(AGENTIC_PROMPT)
        task = await wait_until_terminal(orchestrator, task_id)

        assert task.status == TaskStatus.FAILED
        assert task.error_reason == "I attempted to build it but encountered an issue."
        assert task.backend_used == "agentic"
        assert "stack trace" not in task.error_reason

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_generic_failure(self, orchestrator, fast_stub):
        fast_stub.error = RuntimeError("socket exploded at 0xdeadbeef")

        task_id = orchestrator.create_task("hi")
        task = await wait_until_terminal(orchestrator, task_id)

        assert task.status == TaskStatus.FAILED
        assert task.error_reason == GENERIC_ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_task_deadline(self, fast_stub, agentic_stub, isolated_settings):
        agentic_stub.delay = 5
        orchestrator = TaskOrchestrator(
            fast=fast_stub,
            agentic=agentic_stub,
            store=TaskStore(),
            settings=replace(isolated_settings, task_deadline_seconds=0.05),
        )

        task_id = orchestrator.create_task(AGENTIC_PROMPT)
        task = await wait_until_terminal(orchestrator, task_id)

        assert task.status == TaskStatus.FAILED
        assert task.error_reason.startswith("The request took too long")

    @pytest.mark.asyncio
    async def test_create_task_rejects_invalid_prompt(self, orchestrator):
        with pytest.raises(DispatchError):
            orchestrator.create_task("")

        assert len(orchestrator.store) == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_running_workers(self, orchestrator, agentic_stub):
        agentic_stub.delay = 5
        task_id = orchestrator.create_task(AGENTIC_PROMPT)
        await asyncio.sleep(0.01)

        await orchestrator.stop()

        assert orchestrator.get_task(task_id).status == TaskStatus.PROCESSING


class TestRetentionSweep:
    @pytest.mark.asyncio
    async def test_sweeper_removes_expired_tasks(self, fast_stub, agentic_stub, isolated_settings, fake_clock):
        store = TaskStore(retention_seconds=3600, clock=fake_clock)
        orchestrator = TaskOrchestrator(
            fast=fast_stub,
            agentic=agentic_stub,
            store=store,
            settings=replace(isolated_settings, task_sweep_interval_seconds=0.01),
        )
        task = store.create("old prompt")
        fake_clock.advance(3600)

        await orchestrator.start()
        try:
            for _ in range(100):
                if len(store) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await orchestrator.stop()

        assert len(store) == 0
        with pytest.raises(TaskNotFoundError):
            orchestrator.get_task(task.id)
