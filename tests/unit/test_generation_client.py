import json

import httpx
import pytest

from buildpilot.clients.generation_client import RemoteGenerationService, RemotePhasePlanner
from buildpilot.core.cancellation import CancellationToken
from buildpilot.core.errors import BuildCancelledError, GenerationError, PlanningError
from buildpilot.core.generation import (
    FinalError,
    GenerationEvent,
    GenerationRequest,
    PlanUpdated,
    StepStarted,
    Succeeded,
    parse_event,
)
from buildpilot.models.project import Project


class _Sink:
    def __init__(self, token: CancellationToken | None = None) -> None:
        self.events: list[GenerationEvent] = []
        self._token = token

    async def dispatch(self, event: GenerationEvent) -> None:
        self.events.append(event)
        if self._token is not None:
            self._token.cancel()


def _ndjson(*lines: dict[str, object]) -> str:
    return "\n".join(json.dumps(line) for line in lines) + "\n"


def _service(handler: object) -> RemoteGenerationService:
    return RemoteGenerationService(
        "http://generator.test/run",
        transport=httpx.MockTransport(handler),  # type: ignore[arg-type]
    )


def _request() -> GenerationRequest:
    return GenerationRequest(project=Project(owner_id="u1"), instruction="build it", phase_title="Layout")


def test_parse_event_uses_kind_discriminator() -> None:
    event = parse_event('{"kind": "step_start", "step_index": 2}')
    assert isinstance(event, StepStarted)
    assert event.step_index == 2


@pytest.mark.asyncio
async def test_stream_dispatches_events_until_success() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            text=_ndjson(
                {"kind": "plan_update", "plan": ["a"]},
                {"kind": "step_start", "step_index": 0},
                {"kind": "step_complete", "step_index": 0},
                {"kind": "success", "artifact": {"html": "<main/>"}, "explanation": "ok"},
            ),
        )

    sink = _Sink()
    result = await _service(handler).run(_request(), sink, CancellationToken("p1"))

    assert result is True
    assert isinstance(sink.events[0], PlanUpdated)
    assert isinstance(sink.events[-1], Succeeded)
    assert len(sink.events) == 4
    assert bodies[0]["instruction"] == "build it"
    assert bodies[0]["phase"] == "Layout"


@pytest.mark.asyncio
async def test_stream_final_error_returns_false() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=_ndjson({"kind": "final_error", "message": "nope"}))

    sink = _Sink()
    result = await _service(handler).run(_request(), sink, CancellationToken("p1"))

    assert result is False
    assert isinstance(sink.events[0], FinalError)


@pytest.mark.asyncio
async def test_stream_without_terminal_event_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=_ndjson({"kind": "plan_update", "plan": []}))

    with pytest.raises(GenerationError, match="without a result"):
        await _service(handler).run(_request(), _Sink(), CancellationToken("p1"))


@pytest.mark.asyncio
async def test_http_status_and_bad_payload_become_generation_errors() -> None:
    def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    def garbled(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=_ndjson({"kind": "unknown"}))

    with pytest.raises(GenerationError, match="502"):
        await _service(failing).run(_request(), _Sink(), CancellationToken("p1"))
    with pytest.raises(GenerationError, match="invalid generation event"):
        await _service(garbled).run(_request(), _Sink(), CancellationToken("p1"))


@pytest.mark.asyncio
async def test_stream_stops_when_token_is_cancelled() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text=_ndjson(
                {"kind": "plan_update", "plan": ["a"]},
                {"kind": "step_start", "step_index": 0},
                {"kind": "success", "artifact": {}},
            ),
        )

    token = CancellationToken("p1")
    sink = _Sink(token)

    with pytest.raises(BuildCancelledError):
        await _service(handler).run(_request(), sink, token)
    assert len(sink.events) == 1


@pytest.mark.asyncio
async def test_missing_url_is_rejected() -> None:
    service = RemoteGenerationService("")
    with pytest.raises(GenerationError):
        await service.run(_request(), _Sink(), CancellationToken("p1"))


@pytest.mark.asyncio
async def test_planner_parses_phases_with_goal_fallback() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "phases": [
                    {"title": "Accounts", "description": "Sign up and login"},
                    {"title": "Feed", "goal": "Show recipes"},
                    {"description": "untitled entries are skipped"},
                ]
            },
        )

    planner = RemotePhasePlanner("http://planner.test/plan", transport=httpx.MockTransport(handler))
    drafts = await planner.plan(Project(owner_id="u1"), "build a social platform", [])

    assert [(d.title, d.description) for d in drafts] == [
        ("Accounts", "Sign up and login"),
        ("Feed", "Show recipes"),
    ]


@pytest.mark.asyncio
async def test_planner_errors_become_planning_errors() -> None:
    def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    def shapeless(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"steps": []})

    project = Project(owner_id="u1")
    with pytest.raises(PlanningError):
        await RemotePhasePlanner(
            "http://planner.test/plan", transport=httpx.MockTransport(failing)
        ).plan(project, "x", [])
    with pytest.raises(PlanningError, match="no phase list"):
        await RemotePhasePlanner(
            "http://planner.test/plan", transport=httpx.MockTransport(shapeless)
        ).plan(project, "x", [])
    with pytest.raises(PlanningError):
        await RemotePhasePlanner("").plan(project, "x", [])
