"""
Shared fixtures: in-memory backend stubs, a controllable clock and isolated
settings, orchestrator and rate limiter singletons.

Nothing here performs real HTTP calls.
"""
import asyncio
from typing import List, Optional

import pytest

from dispatcher.core import config as config_module
from dispatcher.core import rate_limit as rate_limit_module
from dispatcher.core.config import Settings
from dispatcher.services.orchestration import orchestrator as orchestrator_module
from dispatcher.services.orchestration import TaskOrchestrator, TaskStore


class FakeClock:
    """Manually advanced clock for retention and cutoff tests."""

    def __init__(self, start: float = 1_000.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubFastBackend:
    """Returns a canned answer or raises a canned error."""

    def __init__(self, text: str = "fast answer", error: Optional[Exception] = None, delay: float = 0.0):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls: List[str] = []
        self.is_configured = True

    async def submit(self, prompt: str, timeout: Optional[float] = None) -> str:
        self.calls.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


class StubAgenticBackend:
    def __init__(self, text: str = "agentic answer", error: Optional[Exception] = None, delay: float = 0.0):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls: List[str] = []
        self.max_waits: List[Optional[float]] = []
        self.is_configured = True

    async def submit(
        self,
        prompt: str,
        poll_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> str:
        self.calls.append(prompt)
        self.max_waits.append(max_wait)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Default settings (auth disabled, no credentials) regardless of the host environment."""
    settings = Settings()
    monkeypatch.setattr(config_module, "_settings", settings)
    monkeypatch.setattr(orchestrator_module, "_orchestrator", None)
    monkeypatch.setattr(rate_limit_module, "_rate_limiter", None)
    return settings


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fast_stub():
    return StubFastBackend()


@pytest.fixture
def agentic_stub():
    return StubAgenticBackend()


@pytest.fixture
def orchestrator(fast_stub, agentic_stub, isolated_settings):
    return TaskOrchestrator(
        fast=fast_stub,
        agentic=agentic_stub,
        store=TaskStore(retention_seconds=isolated_settings.task_retention_seconds),
        settings=isolated_settings,
    )
