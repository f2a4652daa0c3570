"""
Agentic backend adapter (Manus task protocol).

Protocol:
1. POST /tasks creates a remote unit of work → task_id (+ optional share_url)
2. GET /tasks/{task_id} every poll interval; partial assistant text is
   collected on every poll
3. Terminal when the task reports "completed", or when partial text has been
   available for longer than the in-flight cutoff while the task is still
   running (the partial text is then returned as the answer)
4. "failed" surfaces TASK_FAILED with the remote reason
5. The whole poll loop is bounded by max_wait; exceeding it raises TIMEOUT
   with the share link when one exists
"""
import asyncio
import json
import time
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from dispatcher.core.config import Settings, get_settings
from dispatcher.core.logging import get_logger, truncate_prompt
from dispatcher.core.metrics import (
    record_agentic_poll,
    record_backend_error,
    record_backend_request,
)
from dispatcher.core.tracing import get_tracer
from dispatcher.services.backends.extraction import extract_assistant_output, extract_text
from dispatcher.services.errors import DispatchError, ErrorKind
from dispatcher.services.routing.schema import Backend

logger = get_logger(__name__)

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

DEFAULT_APP_URL = "https://app.manus.ai"
CLARIFICATION_HINT = (
    "\n\n💡 Tip: When replying, include the full context since each message is "
    'independent. For example, instead of just "Gmail", say "Use Gmail to access my emails".'
)
CLARIFICATION_MAX_CHARS = 500


def _mentions_credits(body: str) -> bool:
    """
    True when a creation error body is about credits.

    A JSON body is judged by its ``message`` string alone; only bodies that
    are not JSON are matched as raw text.
    """
    try:
        data = json.loads(body)
    except ValueError:
        return "credit" in body.lower()
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return "credit" in data["message"].lower()
    return False


def _with_clarification_hint(text: str) -> str:
    """Short answers asking the user something get a hint about stateless replies."""
    if "?" in text and len(text) < CLARIFICATION_MAX_CHARS:
        return text + CLARIFICATION_HINT
    return text


def task_failed_message(prompt: str, reason: str) -> str:
    return (
        f"I attempted to {truncate_prompt(prompt.lower())} but encountered an issue:\n\n"
        f"{reason}\n\n"
        "Note: the automation agent may need specific permissions or integrations "
        "(for example access to your email or calendar) to complete this kind of task."
    )


def timeout_message(max_wait: float, share_url: Optional[str]) -> str:
    if share_url:
        return (
            f"Your request is taking longer than expected (over {round(max_wait)} seconds). "
            f"The task is still processing; you can check its status here: {share_url}"
        )
    return (
        f"The automation service did not finish within {round(max_wait)} seconds. "
        "Please try again later."
    )


class AgenticBackend:
    """Slow, task-oriented automation service driven by create + poll."""

    name = Backend.AGENTIC

    def __init__(
        self,
        api_key: Optional[str],
        api_base: str = "https://api.manus.ai/v1",
        agent_profile: str = "manus-1.6",
        poll_interval: float = 3.0,
        max_wait: float = 180.0,
        in_flight_cutoff: float = 30.0,
        request_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.agent_profile = agent_profile
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.in_flight_cutoff = in_flight_cutoff
        self.request_timeout = request_timeout
        self._transport = transport
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers={"API_KEY": self.api_key or ""},
            timeout=self.request_timeout,
            transport=self._transport,
        )

    async def submit(
        self,
        prompt: str,
        poll_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> str:
        """
        Run ``prompt`` as a remote task and wait for its answer.

        Raises:
            DispatchError: NOT_CONFIGURED, CREATE_FAILED, CREDITS_EXCEEDED,
                TASK_FAILED, TIMEOUT
        """
        poll_interval = self.poll_interval if poll_interval is None else poll_interval
        max_wait = self.max_wait if max_wait is None else max_wait

        start = time.monotonic()
        with get_tracer().start_as_current_span("backend.agentic.submit") as span:
            span.set_attribute("backend", self.name.value)
            span.set_attribute("agentic.max_wait_seconds", max_wait)
            try:
                text = await self._run(prompt, poll_interval, max_wait)
            except DispatchError as exc:
                record_backend_error(self.name.value, exc.kind.value)
                record_backend_request(self.name.value, False, time.monotonic() - start)
                raise
            record_backend_request(self.name.value, True, time.monotonic() - start)
            return text

    async def _run(self, prompt: str, poll_interval: float, max_wait: float) -> str:
        if not self.api_key:
            raise DispatchError(
                ErrorKind.NOT_CONFIGURED,
                "MANUS_API_KEY is not set",
                backend=self.name.value,
            )

        async with self._client() as client:
            task_id, share_url = await self._create_task(client, prompt)
            try:
                return await asyncio.wait_for(
                    self._poll_until_done(client, prompt, task_id, share_url, poll_interval),
                    timeout=max_wait,
                )
            except asyncio.TimeoutError:
                logger.error(
                    "agentic_backend_timeout",
                    task_id=task_id,
                    max_wait_seconds=max_wait,
                    share_url=share_url,
                )
                raise DispatchError(
                    ErrorKind.TIMEOUT,
                    f"task {task_id} not terminal after {max_wait}s "
                    f"(credential present: {bool(self.api_key)}, share link: {share_url or 'none'})",
                    user_message=timeout_message(max_wait, share_url),
                    backend=self.name.value,
                ) from None

    async def _create_task(
        self, client: httpx.AsyncClient, prompt: str
    ) -> Tuple[str, Optional[str]]:
        logger.info("agentic_task_creating", prompt=truncate_prompt(prompt))
        payload = {
            "prompt": prompt,
            "agentProfile": self.agent_profile,
            "taskMode": "agent",
        }
        try:
            response = await client.post("/tasks", json=payload)
        except httpx.HTTPError as exc:
            logger.error(
                "agentic_task_create_http_error",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise DispatchError(
                ErrorKind.CREATE_FAILED,
                f"task creation request failed: {type(exc).__name__}",
                backend=self.name.value,
            ) from exc

        if response.is_error:
            body = response.text
            logger.error(
                "agentic_task_create_failed",
                status_code=response.status_code,
                error=body[:500],
            )
            if _mentions_credits(body):
                raise DispatchError(
                    ErrorKind.CREDITS_EXCEEDED,
                    f"task creation rejected for credits (HTTP {response.status_code})",
                    backend=self.name.value,
                )
            raise DispatchError(
                ErrorKind.CREATE_FAILED,
                f"task creation returned HTTP {response.status_code}",
                backend=self.name.value,
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not task_id:
            raise DispatchError(
                ErrorKind.CREATE_FAILED,
                "task creation response carried no task_id",
                backend=self.name.value,
            )

        share_url = data.get("share_url") or None
        logger.info("agentic_task_created", task_id=task_id, share_url=share_url)
        return str(task_id), share_url

    async def _fetch_task(self, client: httpx.AsyncClient, task_id: str) -> Optional[Dict[str, Any]]:
        """One status poll; None when the poll itself failed (polling continues)."""
        try:
            response = await client.get(f"/tasks/{task_id}")
        except httpx.HTTPError as exc:
            logger.warning(
                "agentic_poll_http_error",
                task_id=task_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        if response.is_error:
            logger.warning(
                "agentic_poll_failed",
                task_id=task_id,
                status_code=response.status_code,
            )
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("agentic_poll_invalid_json", task_id=task_id)
            return None
        return data if isinstance(data, dict) else None

    async def _poll_until_done(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        task_id: str,
        share_url: Optional[str],
        poll_interval: float,
    ) -> str:
        started = self._clock()
        partial: Optional[str] = None
        partial_since: Optional[float] = None

        while True:
            await asyncio.sleep(poll_interval)

            task = await self._fetch_task(client, task_id)
            if task is None:
                record_agentic_poll("error")
                continue

            status = str(task.get("status") or "")
            now = self._clock()
            record_agentic_poll(status)
            logger.info(
                "agentic_task_status",
                task_id=task_id,
                status=status,
                elapsed_seconds=round(now - started, 1),
            )

            if status == STATUS_COMPLETED:
                text = extract_text(task)
                if not text:
                    logger.info("agentic_task_completed_without_text", task_id=task_id)
                    return f"Task completed! View full results here: {share_url or DEFAULT_APP_URL}"
                logger.info("agentic_task_completed", task_id=task_id)
                return _with_clarification_hint(text)

            if status == STATUS_FAILED:
                reason = str(task.get("error") or task.get("message") or "Task failed")
                logger.error("agentic_task_failed", task_id=task_id, reason=reason)
                raise DispatchError(
                    ErrorKind.TASK_FAILED,
                    f"task {task_id} failed: {reason}",
                    user_message=task_failed_message(prompt, reason),
                    backend=self.name.value,
                )

            current = extract_assistant_output(task)
            if current:
                partial = current
                if partial_since is None:
                    partial_since = now

            if partial and partial_since is not None and now - partial_since > self.in_flight_cutoff:
                logger.info(
                    "agentic_task_partial_accepted",
                    task_id=task_id,
                    status=status,
                    partial_age_seconds=round(now - partial_since, 1),
                )
                return _with_clarification_hint(partial)


def build_agentic_backend(settings: Optional[Settings] = None) -> AgenticBackend:
    settings = settings or get_settings()
    return AgenticBackend(
        api_key=settings.manus_api_key,
        api_base=settings.manus_api_base,
        agent_profile=settings.manus_agent_profile,
        poll_interval=settings.manus_poll_interval_seconds,
        max_wait=settings.manus_max_wait_seconds,
        in_flight_cutoff=settings.manus_in_flight_cutoff_seconds,
    )
