"""
Task orchestration package.

- TaskStore: in-memory task snapshots with retention
- run_with_fallback: credits fallback from the agentic to the fast backend
- TaskOrchestrator: sync dispatch, background tasks and the retention sweep
"""
from .fallback import FALLBACK_NOTICE, DispatchOutcome, run_with_fallback
from .orchestrator import TaskOrchestrator, get_orchestrator
from .store import (
    InvalidTaskTransition,
    Task,
    TaskNotFoundError,
    TaskStatus,
    TaskStore,
)

__all__ = [
    "FALLBACK_NOTICE",
    "DispatchOutcome",
    "InvalidTaskTransition",
    "Task",
    "TaskNotFoundError",
    "TaskOrchestrator",
    "TaskStatus",
    "TaskStore",
    "get_orchestrator",
    "run_with_fallback",
]
