"""
In-memory task store.

Owned by the orchestrator and passed by handle; there is no module-level
task map. Snapshots are frozen pydantic models, replaced wholesale on every
transition, so readers never observe a half-updated task. Status only moves
forward: pending → processing → completed | failed.
"""
import time
import uuid
from enum import Enum
from typing import Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict

from dispatcher.core.logging import get_logger
from dispatcher.core.metrics import record_tasks_swept, update_task_store_size

logger = get_logger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})

_ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class Task(BaseModel):
    """Immutable snapshot of one asynchronous request."""

    model_config = ConfigDict(frozen=True)

    id: str
    prompt: str
    status: TaskStatus = TaskStatus.PENDING
    created_at: float
    updated_at: float
    result: Optional[str] = None
    error_reason: Optional[str] = None
    backend_used: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskNotFoundError(KeyError):
    """Unknown task id, or a task older than the retention window."""

    def __init__(self, task_id: str):
        super().__init__(task_id)
        self.task_id = task_id


class InvalidTaskTransition(RuntimeError):
    def __init__(self, task_id: str, current: TaskStatus, target: TaskStatus):
        super().__init__(f"task {task_id}: {current.value} -> {target.value} is not allowed")
        self.task_id = task_id
        self.current = current
        self.target = target


class TaskStore:
    """Task snapshots keyed by id, with a fixed retention window."""

    def __init__(
        self,
        retention_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._tasks: Dict[str, Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def _is_expired(self, task: Task, now: float) -> bool:
        return now - task.created_at >= self.retention_seconds

    def create(self, prompt: str) -> Task:
        """Allocate a fresh pending task; never fails."""
        now = self._clock()
        task_id = str(uuid.uuid4())
        while task_id in self._tasks:
            task_id = str(uuid.uuid4())
        task = Task(id=task_id, prompt=prompt, created_at=now, updated_at=now)
        self._tasks[task_id] = task
        update_task_store_size(len(self._tasks))
        return task

    def get(self, task_id: str) -> Task:
        """
        Current snapshot of a task.

        Raises:
            TaskNotFoundError: unknown id, or the task outlived the retention window
        """
        task = self._tasks.get(task_id)
        if task is None or self._is_expired(task, self._clock()):
            raise TaskNotFoundError(task_id)
        return task

    def _transition(self, task_id: str, target: TaskStatus, **fields) -> Task:
        current = self.get(task_id)
        if target not in _ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTaskTransition(task_id, current.status, target)
        updated = current.model_copy(
            update={"status": target, "updated_at": self._clock(), **fields}
        )
        self._tasks[task_id] = updated
        return updated

    def mark_processing(self, task_id: str) -> Task:
        return self._transition(task_id, TaskStatus.PROCESSING)

    def complete(self, task_id: str, result: str, backend_used: str) -> Task:
        return self._transition(
            task_id, TaskStatus.COMPLETED, result=result, backend_used=backend_used
        )

    def fail(self, task_id: str, error_reason: str, backend_used: Optional[str] = None) -> Task:
        return self._transition(
            task_id, TaskStatus.FAILED, error_reason=error_reason, backend_used=backend_used
        )

    def sweep(self) -> int:
        """Delete every task older than the retention window, whatever its status."""
        now = self._clock()
        expired = [tid for tid, task in self._tasks.items() if self._is_expired(task, now)]
        for task_id in expired:
            del self._tasks[task_id]
            logger.info("task_expired", task_id=task_id)
        record_tasks_swept(len(expired))
        update_task_store_size(len(self._tasks))
        return len(expired)
