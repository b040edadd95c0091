"""Generation-service contract: event stream, requests, and collaborator protocols."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated, Literal, Protocol

from pydantic import BaseModel, Field, TypeAdapter

from buildpilot.models.project import GeneratedCode, GenerationMeta, Message, PhaseDraft, Project

if TYPE_CHECKING:
    from buildpilot.core.cancellation import CancellationToken

BACKEND_REQUIRED_SENTINEL = "needs_backend"


class PlanUpdated(BaseModel):
    kind: Literal["plan_update"] = "plan_update"
    plan: list[str]


class StepStarted(BaseModel):
    kind: Literal["step_start"] = "step_start"
    step_index: int = Field(ge=0)


class StepCompleted(BaseModel):
    kind: Literal["step_complete"] = "step_complete"
    step_index: int = Field(ge=0)


class ChunkCompleted(BaseModel):
    kind: Literal["chunk_complete"] = "chunk_complete"
    artifact: GeneratedCode


class Succeeded(BaseModel):
    kind: Literal["success"] = "success"
    artifact: GeneratedCode
    explanation: str = ""
    plan: list[str] = Field(default_factory=list)
    meta: GenerationMeta = Field(default_factory=GenerationMeta)


class ErrorReported(BaseModel):
    kind: Literal["error"] = "error"
    message: str
    retries_left: int = 0


class FinalError(BaseModel):
    kind: Literal["final_error"] = "final_error"
    message: str
    plan: list[str] = Field(default_factory=list)


GenerationEvent = Annotated[
    PlanUpdated | StepStarted | StepCompleted | ChunkCompleted | Succeeded | ErrorReported | FinalError,
    Field(discriminator="kind"),
]

GENERATION_EVENT_ADAPTER: TypeAdapter[GenerationEvent] = TypeAdapter(GenerationEvent)


def parse_event(raw: str | bytes) -> GenerationEvent:
    """Decode one JSON-encoded generation event."""
    return GENERATION_EVENT_ADAPTER.validate_json(raw)


@dataclass(slots=True)
class GenerationRequest:
    """One call into the generation service."""

    project: Project
    instruction: str
    images: list[str] = field(default_factory=list)
    context: list[Message] = field(default_factory=list)
    phase_title: str | None = None


class EventSink(Protocol):
    """Consumer of generation events (the callback adapter)."""

    async def dispatch(self, event: GenerationEvent) -> None: ...


class GenerationService(Protocol):
    """External code generator.

    Implementations dispatch zero or one ``PlanUpdated``, then any mix of
    step/chunk/error events, terminating in ``Succeeded`` or ``FinalError``.
    They must call ``token.raise_if_cancelled()`` before each network call.
    Returns ``True`` on success.
    """

    async def run(
        self,
        request: GenerationRequest,
        sink: EventSink,
        token: CancellationToken,
    ) -> bool: ...


class PhasePlanner(Protocol):
    """Splits a large instruction into ordered phases."""

    async def plan(self, project: Project, prompt: str, images: list[str]) -> list[PhaseDraft]: ...
