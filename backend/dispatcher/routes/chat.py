"""
Chat endpoint.

POST /api/chat
- sync (default): route the prompt and return the answer in the response
- async: queue the prompt as a background task and return 202 with its id
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dispatcher.core.logging import get_logger, truncate_prompt
from dispatcher.core.security import require_api_key
from dispatcher.models.requests import ChatRequest
from dispatcher.models.responses import ChatResponse, ErrorResponse, TaskAccepted
from dispatcher.services.orchestration import TaskOrchestrator, get_orchestrator

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(require_api_key)])


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={
        202: {"model": TaskAccepted},
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def chat(
    body: ChatRequest,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """
    Answer a prompt, or queue it when ``async`` is true.

    Errors are raised as ``DispatchError`` and rendered by the application's
    exception handlers (400 validation, 502/503/504 backend failures).
    """
    if body.async_:
        task_id = orchestrator.create_task(body.prompt)
        accepted = TaskAccepted(
            task_id=task_id,
            message="Task created. Poll the status URL for the result.",
            check_status_url=f"/api/task/{task_id}",
        )
        return JSONResponse(status_code=202, content=accepted.model_dump(mode="json"))

    logger.info("chat_request", prompt=truncate_prompt(body.prompt))
    outcome = await orchestrator.submit(body.prompt)
    return ChatResponse(
        response=outcome.text,
        backend=outcome.backend_used,
        routing=outcome.decision,
    )
