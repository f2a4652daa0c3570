"""
Cross-backend fallback policy.

Only one failure is retried on the other backend: the agentic backend
reporting exhausted credits. The prompt is then answered by the fast
backend with a disclosure prefix. If the fast backend is out of quota as
well, the combined outcome is BOTH_EXHAUSTED. Every other failure
propagates unchanged.
"""
from typing import Optional, Protocol

from pydantic import BaseModel

from dispatcher.core.logging import get_logger
from dispatcher.core.metrics import record_fallback
from dispatcher.services.errors import DispatchError, ErrorKind
from dispatcher.services.routing.schema import Backend, RoutingDecision

logger = get_logger(__name__)

FALLBACK_NOTICE = (
    "⚠️ Note: Agentic backend credits exhausted. Using the fast backend as fallback.\n\n"
)


class FastSubmitter(Protocol):
    async def submit(self, prompt: str, timeout: Optional[float] = None) -> str: ...


class AgenticSubmitter(Protocol):
    async def submit(
        self,
        prompt: str,
        poll_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> str: ...


class DispatchOutcome(BaseModel):
    """Final text plus the backend that actually produced it."""

    text: str
    backend_used: Backend
    decision: RoutingDecision
    fell_back: bool = False


async def run_with_fallback(
    prompt: str,
    decision: RoutingDecision,
    fast: FastSubmitter,
    agentic: AgenticSubmitter,
    agentic_max_wait: Optional[float] = None,
) -> DispatchOutcome:
    """
    Dispatch ``prompt`` to the decided backend, applying the credits fallback.

    Raises:
        DispatchError: the chosen backend's error, or BOTH_EXHAUSTED
    """
    if decision.backend is Backend.FAST:
        text = await fast.submit(prompt)
        return DispatchOutcome(text=text, backend_used=Backend.FAST, decision=decision)

    try:
        text = await agentic.submit(prompt, max_wait=agentic_max_wait)
    except DispatchError as exc:
        if exc.kind is not ErrorKind.CREDITS_EXCEEDED:
            raise
        logger.warning("agentic_credits_exhausted_falling_back", detail=exc.detail)
    else:
        return DispatchOutcome(text=text, backend_used=Backend.AGENTIC, decision=decision)

    try:
        text = await fast.submit(prompt)
    except DispatchError as fast_exc:
        record_fallback(Backend.AGENTIC.value, Backend.FAST.value, "failed")
        if fast_exc.kind is ErrorKind.QUOTA_EXCEEDED:
            logger.error("all_backends_exhausted")
            raise DispatchError(
                ErrorKind.BOTH_EXHAUSTED,
                f"agentic credits exhausted and fast quota exceeded ({fast_exc.detail})",
            ) from fast_exc
        raise

    record_fallback(Backend.AGENTIC.value, Backend.FAST.value, "succeeded")
    logger.info("fallback_succeeded", from_backend=Backend.AGENTIC.value, to_backend=Backend.FAST.value)
    return DispatchOutcome(
        text=FALLBACK_NOTICE + text,
        backend_used=Backend.FAST,
        decision=decision,
        fell_back=True,
    )
