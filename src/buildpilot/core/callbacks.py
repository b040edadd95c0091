"""Translate generation events into persisted project state."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeAlias
from enum import StrEnum

from buildpilot.core.cancellation import CancellationToken
from buildpilot.core.event_relay import EventRelay
from buildpilot.core.generation import (
    BACKEND_REQUIRED_SENTINEL,
    ChunkCompleted,
    ErrorReported,
    FinalError,
    GenerationEvent,
    PlanUpdated,
    StepCompleted,
    StepStarted,
    Succeeded,
)
from buildpilot.db.store import ProjectStore
from buildpilot.models.events import LogLevel
from buildpilot.models.project import (
    BuildState,
    GeneratedCode,
    GenerationMeta,
    JobStatus,
    JobSummary,
    Message,
    MessageRole,
    MessageType,
    Project,
    ProjectStatus,
)

logger = logging.getLogger(__name__)

StateListener: TypeAlias = Callable[[Project], None]

SUMMARY_TITLE_CHARS = 30
AUDIT_SOURCE = "build.generation"
BACKEND_REQUIRED_MESSAGE = (
    "**Backend Required**\n\n"
    "This project needs a database. Connect a backend to the project and send the request again."
)


class GenerationOutcome(StrEnum):
    """Terminal event observed for the current generation pass."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BACKEND_REQUIRED = "backend_required"


def summary_title(prompt: str) -> str:
    text = " ".join(prompt.split())
    if len(text) <= SUMMARY_TITLE_CHARS:
        return text
    return text[:SUMMARY_TITLE_CHARS].rstrip() + "..."


class BuildCallbacks:
    """Callback adapter bound to one project for one build.

    Every operation mutates the project, saves it, and then notifies the
    state listener. Save failures propagate to the caller; audit-log writes
    go through the relay and never raise.
    """

    def __init__(
        self,
        project: Project,
        *,
        store: ProjectStore,
        relay: EventRelay,
        token: CancellationToken,
        prompt: str,
        on_change: StateListener | None = None,
    ) -> None:
        self.project = project
        self.prompt = prompt
        self.outcome: GenerationOutcome | None = None
        self._store = store
        self._relay = relay
        self._token = token
        self._on_change = on_change

    @property
    def state(self) -> BuildState:
        if self.project.build_state is None:
            self.project.build_state = BuildState.seed()
        return self.project.build_state

    @property
    def is_phased(self) -> bool:
        return not self.state.is_flat

    def reset_outcome(self) -> None:
        self.outcome = None

    async def dispatch(self, event: GenerationEvent) -> None:
        """Route one generation event; ignored once the build is cancelled."""
        if self._token.cancelled:
            logger.debug("Dropping %s event for cancelled build %s", event.kind, self.project.id)
            return
        match event:
            case PlanUpdated(plan=plan):
                await self.on_plan_update(plan)
            case StepStarted(step_index=index):
                await self.on_step_start(index)
            case StepCompleted(step_index=index):
                await self.on_step_complete(index)
            case ChunkCompleted(artifact=artifact):
                await self.on_chunk_complete(artifact)
            case Succeeded(artifact=artifact, explanation=explanation, plan=plan, meta=meta):
                await self.on_success(artifact, explanation, plan, meta)
            case ErrorReported(message=message, retries_left=retries_left):
                await self.on_error(message, retries_left)
            case FinalError(message=message, plan=plan):
                await self.on_final_error(message, plan)

    async def on_plan_update(self, plan: list[str]) -> None:
        state = self.state
        state.plan = list(plan)
        state.current_step = 0
        state.last_completed_step = -1
        state.error = None
        self.project.status = ProjectStatus.GENERATING
        await self.persist()

    async def on_step_start(self, step_index: int) -> None:
        state = self.state
        state.current_step = step_index
        state.last_completed_step = min(state.last_completed_step, step_index - 1)
        state.error = None
        await self.persist()

    async def on_step_complete(self, step_index: int) -> None:
        state = self.state
        state.last_completed_step = step_index
        state.current_step = max(state.current_step, step_index + 1)
        await self.persist()

    async def on_chunk_complete(self, artifact: GeneratedCode) -> None:
        self.project.code = artifact
        await self.persist()

    async def on_success(
        self,
        artifact: GeneratedCode,
        explanation: str,
        plan: list[str],
        meta: GenerationMeta | None = None,
    ) -> None:
        state = self.state
        meta = meta or GenerationMeta()
        steps = list(plan) or list(state.plan)

        self.project.code = artifact
        self.project.append_message(
            Message(
                role=MessageRole.ASSISTANT,
                content=explanation or artifact.explanation,
                type=MessageType.JOB_SUMMARY,
                job_summary=JobSummary(
                    title=summary_title(self.prompt),
                    plan=steps,
                    status=JobStatus.COMPLETED,
                ),
                execution_time_ms=meta.elapsed_ms,
                credits_used=meta.credits,
            )
        )
        if state.is_flat:
            self.project.status = ProjectStatus.IDLE
        state.error = None
        state.plan = steps
        state.current_step = len(steps)
        state.last_completed_step = len(steps) - 1
        self.outcome = GenerationOutcome.SUCCEEDED
        await self.persist()

    async def on_error(self, message: str, retries_left: int) -> None:
        self.state.error = message
        await self.persist()
        self._relay.log(
            LogLevel.WARNING,
            AUDIT_SOURCE,
            f"{message} ({retries_left} retries left)",
            project_id=self.project.id,
        )

    async def on_final_error(self, message: str, plan: list[str] | None = None) -> None:
        state = self.state
        if message == BACKEND_REQUIRED_SENTINEL:
            self.project.append_message(
                Message(
                    role=MessageRole.ASSISTANT,
                    content=BACKEND_REQUIRED_MESSAGE,
                    type=MessageType.ASSISTANT_RESPONSE,
                )
            )
            self.project.status = ProjectStatus.IDLE
            self.outcome = GenerationOutcome.BACKEND_REQUIRED
            await self.persist()
            return

        state.error = message
        self.outcome = GenerationOutcome.FAILED
        if state.is_flat:
            self.append_failure_summary(f"Build failed: {message}", plan or state.plan)
            self.project.status = ProjectStatus.IDLE
        await self.persist()
        self._relay.log(LogLevel.ERROR, AUDIT_SOURCE, message, project_id=self.project.id)

    def append_failure_summary(self, content: str, plan: list[str]) -> Message:
        return self.project.append_message(
            Message(
                role=MessageRole.ASSISTANT,
                content=f"{content}\n\nYou can retry the build.",
                type=MessageType.JOB_SUMMARY,
                job_summary=JobSummary(
                    title=summary_title(self.prompt),
                    plan=list(plan),
                    status=JobStatus.FAILED,
                ),
            )
        )

    async def persist(self) -> None:
        await self._store.save_project(self.project)
        if self._on_change is not None:
            self._on_change(self.project)
