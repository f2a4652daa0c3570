"""
Task orchestration layer.

Responsibilities:
- Validate prompts before any backend is consulted
- Route prompts and dispatch them through the fallback policy
- Synchronous path: await the answer in the calling request
- Asynchronous path: allocate a task, run it in a background asyncio task
  bounded by a deadline, and expose immutable snapshots to pollers
- Periodically sweep tasks past the retention window

NON-responsibilities:
- Does NOT speak any backend wire protocol (adapters do)
- Does NOT render answers
"""
import asyncio
from typing import Any, Optional, Set

import structlog

from dispatcher.core.config import Settings, get_settings
from dispatcher.core.logging import get_logger, truncate_prompt
from dispatcher.core.metrics import (
    record_routing_decision,
    record_task_created,
    record_task_finished,
)
from dispatcher.core.tracing import get_tracer
from dispatcher.services.backends import build_agentic_backend, build_fast_backend
from dispatcher.services.errors import DispatchError, ErrorKind, error_response
from dispatcher.services.orchestration.fallback import (
    AgenticSubmitter,
    DispatchOutcome,
    FastSubmitter,
    run_with_fallback,
)
from dispatcher.services.orchestration.store import (
    Task,
    TaskNotFoundError,
    TaskStatus,
    TaskStore,
)
from dispatcher.services.routing import RoutingDecision, choose_backend

logger = get_logger(__name__)


class TaskOrchestrator:
    """
    Owns the task store and the background workers that mutate it.

    Exactly one worker writes a given task; everybody else only reads
    frozen snapshots through ``get_task``.
    """

    def __init__(
        self,
        fast: FastSubmitter,
        agentic: AgenticSubmitter,
        store: TaskStore,
        settings: Optional[Settings] = None,
    ):
        self.fast = fast
        self.agentic = agentic
        self.store = store
        self.settings = settings or get_settings()
        self._workers: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ input

    def validate_prompt(self, prompt: Any) -> str:
        """
        Reject malformed prompts.

        Raises:
            DispatchError(VALIDATION): missing, non-string, blank or over-length prompt
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise DispatchError(ErrorKind.VALIDATION, "prompt missing, blank or not a string")
        limit = self.settings.max_prompt_chars
        if len(prompt) > limit:
            raise DispatchError(
                ErrorKind.VALIDATION,
                f"prompt has {len(prompt)} characters (limit {limit})",
                user_message=f"Prompt must be at most {limit:,} characters.",
            )
        return prompt

    def route(self, prompt: str) -> RoutingDecision:
        decision = choose_backend(prompt)
        record_routing_decision(decision.backend.value, decision.confidence)
        logger.info(
            "routing_decision",
            prompt=truncate_prompt(prompt),
            backend=decision.backend.value,
            confidence=decision.confidence,
            fast_score=decision.scores.fast,
            agentic_score=decision.scores.agentic,
        )
        return decision

    # ------------------------------------------------------------ sync path

    async def submit(self, prompt: Any) -> DispatchOutcome:
        """Validate, route and answer ``prompt`` within the calling request."""
        prompt = self.validate_prompt(prompt)
        decision = self.route(prompt)
        outcome = await run_with_fallback(
            prompt,
            decision,
            self.fast,
            self.agentic,
            agentic_max_wait=self.settings.manus_max_wait_seconds,
        )
        logger.info(
            "dispatch_completed",
            chosen_backend=decision.backend.value,
            backend_used=outcome.backend_used.value,
            fell_back=outcome.fell_back,
        )
        return outcome

    # ----------------------------------------------------------- async path

    def create_task(self, prompt: Any) -> str:
        """
        Allocate a task and start its background worker.

        Returns the task id immediately; the worker keeps running after the
        calling request has finished.
        """
        prompt = self.validate_prompt(prompt)
        task = self.store.create(prompt)
        record_task_created()
        worker = asyncio.create_task(self._run_task(task.id, prompt), name=f"task-{task.id}")
        self._workers.add(worker)
        worker.add_done_callback(self._workers.discard)
        logger.info("task_created", task_id=task.id, prompt=truncate_prompt(prompt))
        return task.id

    def get_task(self, task_id: str) -> Task:
        """
        Raises:
            TaskNotFoundError: unknown or expired task
        """
        return self.store.get(task_id)

    async def _run_task(self, task_id: str, prompt: str) -> None:
        structlog.contextvars.bind_contextvars(task_id=task_id)
        try:
            self.store.mark_processing(task_id)
            decision = self.route(prompt)
            with get_tracer().start_as_current_span("task.run") as span:
                span.set_attribute("task.id", task_id)
                span.set_attribute("task.chosen_backend", decision.backend.value)
                outcome = await asyncio.wait_for(
                    run_with_fallback(
                        prompt,
                        decision,
                        self.fast,
                        self.agentic,
                        agentic_max_wait=self.settings.manus_async_max_wait_seconds,
                    ),
                    timeout=self.settings.task_deadline_seconds,
                )
        except asyncio.TimeoutError:
            logger.error(
                "task_deadline_exceeded",
                deadline_seconds=self.settings.task_deadline_seconds,
            )
            self._finish_failed(task_id, DispatchError(ErrorKind.TIMEOUT, "task deadline exceeded"))
        except TaskNotFoundError:
            logger.warning("task_expired_before_completion")
        except Exception as exc:
            if isinstance(exc, DispatchError):
                logger.warning(
                    "task_failed",
                    kind=exc.kind.value,
                    backend=exc.backend,
                    detail=exc.detail,
                )
            else:
                logger.error(
                    "task_unexpected_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
            self._finish_failed(task_id, exc)
        else:
            try:
                self.store.complete(task_id, outcome.text, outcome.backend_used.value)
            except TaskNotFoundError:
                logger.warning("task_expired_before_completion")
                return
            record_task_finished(TaskStatus.COMPLETED.value)
            logger.info(
                "task_completed",
                backend_used=outcome.backend_used.value,
                fell_back=outcome.fell_back,
            )
        finally:
            structlog.contextvars.unbind_contextvars("task_id")

    def _finish_failed(self, task_id: str, error: BaseException) -> None:
        _, message = error_response(error)
        backend = error.backend if isinstance(error, DispatchError) else None
        try:
            self.store.fail(task_id, message, backend_used=backend)
        except TaskNotFoundError:
            logger.warning("task_expired_before_completion")
            return
        record_task_finished(TaskStatus.FAILED.value)

    # ---------------------------------------------------------- lifecycle

    async def start(self) -> None:
        """Start the periodic retention sweep."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="task-sweeper")
            logger.info(
                "task_sweeper_started",
                interval_seconds=self.settings.task_sweep_interval_seconds,
                retention_seconds=self.store.retention_seconds,
            )

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.task_sweep_interval_seconds)
            try:
                removed = self.store.sweep()
            except Exception as exc:
                logger.error(
                    "task_sweep_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                continue
            if removed:
                logger.info("task_sweep_completed", removed=removed, remaining=len(self.store))

    async def stop(self) -> None:
        """Stop the sweeper and cancel workers still running at shutdown."""
        pending = list(self._workers)
        cancelled_workers = len(pending)
        if self._sweeper is not None:
            pending.append(self._sweeper)
        for job in pending:
            job.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._sweeper = None
        logger.info("task_orchestrator_stopped", cancelled_workers=cancelled_workers)


_orchestrator: Optional[TaskOrchestrator] = None


def get_orchestrator() -> TaskOrchestrator:
    """Global orchestrator accessor (FastAPI dependency)."""
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        _orchestrator = TaskOrchestrator(
            fast=build_fast_backend(settings),
            agentic=build_agentic_backend(settings),
            store=TaskStore(retention_seconds=settings.task_retention_seconds),
            settings=settings,
        )
    return _orchestrator
