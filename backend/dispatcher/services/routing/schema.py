"""
Routing models shared by the router, the orchestrator and the API layer.
"""
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Backend(str, Enum):
    """Backends a prompt can be dispatched to."""
    FAST = "fast"
    AGENTIC = "agentic"


class RoutingScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    fast: int = Field(0, ge=0)
    agentic: int = Field(0, ge=0)


class RoutingDecision(BaseModel):
    """
    The router's verdict for one prompt.

    ``confidence`` is the absolute score difference between the two
    backends. It is not a calibrated probability.
    """

    model_config = ConfigDict(frozen=True)

    backend: Backend
    confidence: int = Field(..., ge=0)
    scores: RoutingScores
