"""
Fast backend adapter (Gemini ``generateContent`` protocol).

Tries an ordered cascade of model variants, each with its own deadline and
circuit breaker:
- non-empty text → returned immediately
- HTTP 429 → quota remembered, next variant
- HTTP 403 mentioning a leaked key / PERMISSION_DENIED → KEY_REVOKED, no further variants
- anything else (other status, empty text, transport error, timeout) → next variant

Exhausting the cascade raises QUOTA_EXCEEDED if any variant reported quota
(so the caller can fall back), TIMEOUT if every attempt timed out, and
ALL_CANDIDATES_FAILED otherwise.
"""
import time
from typing import Any, Dict, Optional, Sequence

import httpx

from dispatcher.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from dispatcher.core.config import Settings, get_settings
from dispatcher.core.logging import get_logger
from dispatcher.core.metrics import (
    record_backend_error,
    record_backend_request,
    record_fast_variant_attempt,
)
from dispatcher.core.tracing import get_tracer
from dispatcher.services.errors import DispatchError, ErrorKind
from dispatcher.services.routing.schema import Backend

logger = get_logger(__name__)

REVOKED_KEY_MARKERS = ("leaked", "PERMISSION_DENIED")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return f"{error.get('message') or ''} {error.get('status') or ''}".strip()
    return response.text


def _candidate_text(data: Any) -> Optional[str]:
    """Join the text parts of the first candidate."""
    if not isinstance(data, dict):
        return None
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    text = "".join(texts).strip()
    return text or None


class FastBackend:
    """Low-latency synchronous text completion with a model cascade."""

    name = Backend.FAST

    def __init__(
        self,
        api_key: Optional[str],
        models: Sequence[str],
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.models = tuple(models)
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._breakers: Dict[str, CircuitBreaker] = {
            model: CircuitBreaker(name=f"fast_{model}") for model in self.models
        }

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _post(self, model: str, prompt: str, timeout: float) -> httpx.Response:
        """One generateContent call; the timeout covers this variant only."""
        url = f"{self.api_base}/models/{model}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            return await client.post(url, headers=headers, json=payload)

    async def submit(self, prompt: str, timeout: Optional[float] = None) -> str:
        """
        Generate an answer for ``prompt``.

        Args:
            prompt: Validated user prompt
            timeout: Per-variant deadline in seconds (defaults to the configured value)

        Raises:
            DispatchError: NOT_CONFIGURED, KEY_REVOKED, QUOTA_EXCEEDED, TIMEOUT,
                ALL_CANDIDATES_FAILED
        """
        start = time.monotonic()
        with get_tracer().start_as_current_span("backend.fast.submit") as span:
            span.set_attribute("backend", self.name.value)
            try:
                text = await self._run_cascade(prompt, timeout or self.timeout_seconds)
            except DispatchError as exc:
                record_backend_error(self.name.value, exc.kind.value)
                record_backend_request(self.name.value, False, time.monotonic() - start)
                raise
            record_backend_request(self.name.value, True, time.monotonic() - start)
            return text

    async def _run_cascade(self, prompt: str, timeout: float) -> str:
        if not self.api_key:
            raise DispatchError(
                ErrorKind.NOT_CONFIGURED,
                "GEMINI_API_KEY is not set",
                backend=self.name.value,
            )

        quota_exceeded = False
        attempted = 0
        timed_out = 0
        last_error = ""

        for model in self.models:
            try:
                response = await self._breakers[model].call_async(
                    self._post, model, prompt, timeout
                )
            except CircuitBreakerOpenError:
                record_fast_variant_attempt(model, "circuit_open")
                logger.warning("fast_backend_variant_circuit_open", model=model)
                last_error = f"{model}: circuit open"
                continue
            except httpx.TimeoutException as exc:
                attempted += 1
                timed_out += 1
                record_fast_variant_attempt(model, "timeout")
                logger.warning(
                    "fast_backend_variant_timeout",
                    model=model,
                    timeout_seconds=timeout,
                    error_type=type(exc).__name__,
                )
                last_error = f"{model}: timeout after {timeout}s"
                continue
            except httpx.HTTPError as exc:
                attempted += 1
                record_fast_variant_attempt(model, "unavailable")
                logger.warning(
                    "fast_backend_variant_http_error",
                    model=model,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                last_error = f"{model}: {type(exc).__name__}"
                continue

            attempted += 1
            status = response.status_code

            if status == 200:
                try:
                    text = _candidate_text(response.json())
                except ValueError:
                    text = None
                if text:
                    record_fast_variant_attempt(model, "success")
                    logger.info("fast_backend_responded", model=model)
                    return text
                record_fast_variant_attempt(model, "unavailable")
                logger.warning("fast_backend_variant_empty_response", model=model)
                last_error = f"{model}: empty response"
                continue

            message = _error_message(response)

            if status == 403 and any(marker in message for marker in REVOKED_KEY_MARKERS):
                record_fast_variant_attempt(model, "revoked")
                logger.error("fast_backend_key_revoked", model=model, status_code=status)
                raise DispatchError(
                    ErrorKind.KEY_REVOKED,
                    f"{model} rejected the credential: {message}",
                    backend=self.name.value,
                )

            if status == 429:
                quota_exceeded = True
                record_fast_variant_attempt(model, "quota")
                logger.warning("fast_backend_quota_exceeded", model=model, error=message)
                last_error = f"{model}: quota exceeded"
                continue

            record_fast_variant_attempt(model, "unavailable")
            logger.warning(
                "fast_backend_variant_failed",
                model=model,
                status_code=status,
                error=message[:200],
            )
            last_error = f"{model}: HTTP {status}"

        if quota_exceeded:
            raise DispatchError(
                ErrorKind.QUOTA_EXCEEDED,
                f"quota exceeded across model cascade ({last_error})",
                backend=self.name.value,
            )
        if attempted and timed_out == attempted:
            raise DispatchError(
                ErrorKind.TIMEOUT,
                f"every model variant timed out after {timeout}s",
                backend=self.name.value,
            )
        raise DispatchError(
            ErrorKind.ALL_CANDIDATES_FAILED,
            f"no model variant produced text (last error: {last_error or 'none'})",
            backend=self.name.value,
        )


def build_fast_backend(settings: Optional[Settings] = None) -> FastBackend:
    settings = settings or get_settings()
    return FastBackend(
        api_key=settings.gemini_api_key,
        models=settings.gemini_models,
        api_base=settings.gemini_api_base,
        timeout_seconds=settings.gemini_timeout_seconds,
    )
