"""
Task status endpoint.

GET /api/task/{task_id}
Returns the current snapshot of a background task, or 404 when the id is
unknown or the task has outlived the retention window.
"""
from fastapi import APIRouter, Depends, HTTPException

from dispatcher.core.logging import get_logger
from dispatcher.core.security import require_api_key
from dispatcher.models.responses import ErrorResponse, TaskResponse
from dispatcher.services.orchestration import (
    TaskNotFoundError,
    TaskOrchestrator,
    get_orchestrator,
)

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(require_api_key)])


@router.get(
    "/task/{task_id}",
    response_model=TaskResponse,
    responses={404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def get_task(
    task_id: str,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    try:
        task = orchestrator.get_task(task_id)
    except TaskNotFoundError:
        logger.info("task_not_found", task_id=task_id)
        raise HTTPException(status_code=404, detail="Task not found")
    return TaskResponse.from_task(task)
