"""
Response models for API endpoints.

These models define the structure of API responses.
"""
from typing import Dict, Optional

from pydantic import BaseModel

from dispatcher.services.orchestration.store import Task, TaskStatus
from dispatcher.services.routing import Backend, RoutingDecision


class ChatResponse(BaseModel):
    """Synchronous chat answer."""
    response: str
    backend: Backend
    routing: RoutingDecision


class TaskAccepted(BaseModel):
    """Returned when a prompt is queued as a background task."""
    task_id: str
    status: TaskStatus = TaskStatus.PENDING
    message: str
    check_status_url: str


class TaskResponse(BaseModel):
    id: str
    status: TaskStatus
    created_at: float
    updated_at: float
    result: Optional[str] = None
    error: Optional[str] = None
    backend: Optional[str] = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            status=task.status,
            created_at=task.created_at,
            updated_at=task.updated_at,
            result=task.result,
            error=task.error_reason,
            backend=task.backend_used,
        )


class HealthResponse(BaseModel):
    status: str
    services: Dict[str, bool]
    tasks: int
    version: str


class ErrorResponse(BaseModel):
    detail: str
    error: Optional[str] = None
    status_code: int
    trace_id: Optional[str] = None
    retry_after: Optional[int] = None
