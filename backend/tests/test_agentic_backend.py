"""
Unit tests for the agentic backend create + poll protocol.

Uses httpx.MockTransport and zero poll intervals; no real HTTP calls and no
real waiting (except the short max_wait timeout test).
"""
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from dispatcher.services.backends.agentic import (
    CLARIFICATION_HINT,
    AgenticBackend,
)
from dispatcher.services.errors import DispatchError, ErrorKind

SHARE_URL = "https://manus.test/share/abc"


def _assistant(text: str) -> List[Dict[str, Any]]:
    return [{"role": "assistant", "content": [{"type": "output_text", "text": text}]}]


class FakeManus:
    """Scripted task service: one creation response, then a list of poll responses."""

    def __init__(self, polls: List[httpx.Response], create: Optional[httpx.Response] = None, on_poll=None):
        self.create = create or httpx.Response(
            200, json={"task_id": "task-1", "share_url": SHARE_URL}
        )
        self.polls = list(polls)
        self.on_poll = on_poll
        self.created: List[Dict[str, Any]] = []
        self.create_headers: List[httpx.Headers] = []
        self.poll_count = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/v1/tasks":
            self.created.append(json.loads(request.content))
            self.create_headers.append(request.headers)
            return self.create
        assert request.method == "GET" and request.url.path == "/v1/tasks/task-1"
        self.poll_count += 1
        if self.on_poll:
            self.on_poll()
        if len(self.polls) > 1:
            return self.polls.pop(0)
        return self.polls[0]


def _backend(service: FakeManus, **kwargs) -> AgenticBackend:
    options = {
        "api_key": "manus-key",
        "api_base": "https://manus.test/v1",
        "poll_interval": 0,
        "max_wait": 5,
        "in_flight_cutoff": 30,
    }
    options.update(kwargs)
    return AgenticBackend(transport=httpx.MockTransport(service), **options)


def _status(status: str, **fields) -> httpx.Response:
    return httpx.Response(200, json={"status": status, **fields})


@pytest.mark.asyncio
async def test_completed_task_returns_assistant_text():
    service = FakeManus([_status("running"), _status("completed", output=_assistant("Report ready."))])
    backend = _backend(service)

    assert await backend.submit("build a report") == "Report ready."
    assert service.poll_count == 2
    assert service.created == [
        {"prompt": "build a report", "agentProfile": "manus-1.6", "taskMode": "agent"}
    ]
    assert service.create_headers[0]["API_KEY"] == "manus-key"


@pytest.mark.asyncio
async def test_short_question_answer_gets_clarification_hint():
    service = FakeManus([_status("completed", output=_assistant("Which mailbox should I use?"))])

    text = await _backend(service).submit("check my emails")

    assert text == "Which mailbox should I use?" + CLARIFICATION_HINT


@pytest.mark.asyncio
async def test_completed_without_text_links_to_results():
    service = FakeManus([_status("completed", output=[])])

    text = await _backend(service).submit("make slides")

    assert text == f"Task completed! View full results here: {SHARE_URL}"


@pytest.mark.asyncio
async def test_completed_without_text_or_share_link():
    service = FakeManus(
        [_status("completed")],
        create=httpx.Response(200, json={"task_id": "task-1"}),
    )

    text = await _backend(service).submit("make slides")

    assert text == "Task completed! View full results here: https://app.manus.ai"


@pytest.mark.asyncio
async def test_failed_task():
    service = FakeManus([_status("failed", error="Gmail integration not connected")])

    with pytest.raises(DispatchError) as exc_info:
        await _backend(service).submit("Summarize my last 5 emails")

    error = exc_info.value
    assert error.kind is ErrorKind.TASK_FAILED
    assert error.http_status == 502
    assert "Gmail integration not connected" in error.user_message
    assert "summarize my last 5 emails" in error.user_message


@pytest.mark.asyncio
async def test_credits_exhausted_on_creation():
    service = FakeManus([], create=httpx.Response(402, json={"message": "Insufficient credits"}))

    with pytest.raises(DispatchError) as exc_info:
        await _backend(service).submit("build a site")

    assert exc_info.value.kind is ErrorKind.CREDITS_EXCEEDED
    assert service.poll_count == 0


@pytest.mark.asyncio
async def test_credits_in_plain_text_creation_error():
    service = FakeManus([], create=httpx.Response(402, text="Out of credits"))

    with pytest.raises(DispatchError) as exc_info:
        await _backend(service).submit("build a site")

    assert exc_info.value.kind is ErrorKind.CREDITS_EXCEEDED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"message": "Invalid prompt", "detail": "credit card required for this profile"},
        {"error": "credit card required for this profile"},
    ],
)
async def test_json_body_judged_by_message_only(payload):
    service = FakeManus([], create=httpx.Response(400, json=payload))

    with pytest.raises(DispatchError) as exc_info:
        await _backend(service).submit("build a site")

    assert exc_info.value.kind is ErrorKind.CREATE_FAILED


@pytest.mark.asyncio
async def test_other_creation_error():
    service = FakeManus([], create=httpx.Response(500, text="upstream exploded"))

    with pytest.raises(DispatchError) as exc_info:
        await _backend(service).submit("build a site")

    assert exc_info.value.kind is ErrorKind.CREATE_FAILED


@pytest.mark.asyncio
async def test_creation_without_task_id():
    service = FakeManus([], create=httpx.Response(200, json={"share_url": SHARE_URL}))

    with pytest.raises(DispatchError) as exc_info:
        await _backend(service).submit("build a site")

    assert exc_info.value.kind is ErrorKind.CREATE_FAILED


@pytest.mark.asyncio
async def test_poll_errors_do_not_abort():
    service = FakeManus(
        [
            httpx.Response(503, text="busy"),
            httpx.Response(200, text="not json"),
            _status("completed", result="flat result"),
        ]
    )

    assert await _backend(service).submit("run it") == "flat result"
    assert service.poll_count == 3


@pytest.mark.asyncio
async def test_partial_output_returned_after_in_flight_cutoff(fake_clock):
    fake_clock.step = 10.0
    service = FakeManus([_status("running", output=_assistant("Here is a draft."))])
    backend = _backend(service, in_flight_cutoff=15, clock=fake_clock)

    text = await backend.submit("write a draft")

    assert text == "Here is a draft."
    # first partial at t+10, cutoff exceeded at t+30
    assert service.poll_count == 3


@pytest.mark.asyncio
async def test_running_without_partial_never_cut_off(fake_clock):
    fake_clock.step = 100.0
    service = FakeManus(
        [
            _status("running"),
            _status("running"),
            _status("completed", output=_assistant("done")),
        ]
    )
    backend = _backend(service, in_flight_cutoff=1, clock=fake_clock)

    assert await backend.submit("do it") == "done"
    assert service.poll_count == 3


@pytest.mark.asyncio
async def test_timeout_includes_share_link():
    service = FakeManus([_status("running")])
    backend = _backend(service, poll_interval=0.01, max_wait=0.05)

    with pytest.raises(DispatchError) as exc_info:
        await backend.submit("build a site")

    error = exc_info.value
    assert error.kind is ErrorKind.TIMEOUT
    assert error.http_status == 504
    assert SHARE_URL in error.user_message
    assert "manus-key" not in error.user_message
    assert "credential present: True" in error.detail


@pytest.mark.asyncio
async def test_max_wait_override():
    service = FakeManus([_status("running")])
    backend = _backend(service, poll_interval=0.01, max_wait=60)

    with pytest.raises(DispatchError) as exc_info:
        await backend.submit("build a site", max_wait=0.05)

    assert exc_info.value.kind is ErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_not_configured():
    service = FakeManus([])
    backend = _backend(service, api_key=None)

    assert backend.is_configured is False
    with pytest.raises(DispatchError) as exc_info:
        await backend.submit("build a site")

    assert exc_info.value.kind is ErrorKind.NOT_CONFIGURED
    assert service.created == []
