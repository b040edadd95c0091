"""HTTP clients for the external generation and phase-planning services."""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from buildpilot.core.cancellation import CancellationToken
from buildpilot.core.errors import GenerationError, PlanningError
from buildpilot.core.generation import (
    EventSink,
    FinalError,
    GenerationRequest,
    Succeeded,
    parse_event,
)
from buildpilot.models.project import PhaseDraft, Project


class RemoteGenerationService:
    """Stream newline-delimited JSON generation events from a remote service."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 75.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport

    async def run(
        self,
        request: GenerationRequest,
        sink: EventSink,
        token: CancellationToken,
    ) -> bool:
        if not self._url:
            msg = "GENERATION_URL is not configured"
            raise GenerationError(msg)
        token.raise_if_cancelled()

        result: bool | None = None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream("POST", self._url, json=self._body(request)) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        token.raise_if_cancelled()
                        if not line.strip():
                            continue
                        event = parse_event(line)
                        await sink.dispatch(event)
                        if isinstance(event, Succeeded):
                            result = True
                        elif isinstance(event, FinalError):
                            result = False
        except httpx.TimeoutException as exc:
            msg = f"generation timed out: {exc}"
            raise GenerationError(msg) from exc
        except httpx.HTTPStatusError as exc:
            msg = f"generation failed with http status {exc.response.status_code}"
            raise GenerationError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"generation transport error: {exc}"
            raise GenerationError(msg) from exc
        except ValidationError as exc:
            msg = f"invalid generation event: {exc.error_count()} validation error(s)"
            raise GenerationError(msg) from exc

        if result is None:
            msg = "generation stream ended without a result"
            raise GenerationError(msg)
        return result

    @staticmethod
    def _body(request: GenerationRequest) -> dict[str, Any]:
        return {
            "project_id": request.project.id,
            "instruction": request.instruction,
            "phase": request.phase_title,
            "images": request.images,
            "code": request.project.code.model_dump(mode="json"),
            "messages": [
                {"role": message.role.value, "content": message.content}
                for message in request.context
            ],
        }


class RemotePhasePlanner:
    """Ask a remote planner to split an instruction into phases."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 75.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._transport = transport

    async def plan(self, project: Project, prompt: str, images: list[str]) -> list[PhaseDraft]:
        if not self._url:
            msg = "PLANNER_URL is not configured"
            raise PlanningError(msg)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._url,
                    json={"project_id": project.id, "prompt": prompt, "images": images},
                )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            msg = f"planner request failed: {exc}"
            raise PlanningError(msg) from exc
        except ValueError as exc:
            msg = "planner returned invalid JSON"
            raise PlanningError(msg) from exc

        raw_phases = payload.get("phases") if isinstance(payload, dict) else None
        if not isinstance(raw_phases, list):
            msg = "planner response has no phase list"
            raise PlanningError(msg)

        drafts: list[PhaseDraft] = []
        for item in raw_phases:
            if not isinstance(item, dict) or not item.get("title"):
                continue
            drafts.append(
                PhaseDraft(
                    title=str(item["title"]),
                    description=str(item.get("description") or item.get("goal") or ""),
                )
            )
        return drafts
