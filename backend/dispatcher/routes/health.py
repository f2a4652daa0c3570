"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends

from dispatcher import __version__
from dispatcher.models.responses import HealthResponse
from dispatcher.services.orchestration import TaskOrchestrator, get_orchestrator

router = APIRouter()


@router.get("/", response_model=HealthResponse)
async def health_check(orchestrator: TaskOrchestrator = Depends(get_orchestrator)):
    """
    Basic health check endpoint.

    Reports which backends have credentials configured and how many tasks
    the store currently holds. Never calls the backends.
    """
    return HealthResponse(
        status="ok",
        services={
            "fast": orchestrator.fast.is_configured,
            "agentic": orchestrator.agentic.is_configured,
        },
        tasks=len(orchestrator.store),
        version=__version__,
    )
