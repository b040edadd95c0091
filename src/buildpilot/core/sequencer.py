"""Drive a build's phases through the generation service."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeAlias
from enum import StrEnum

from buildpilot.core.callbacks import BuildCallbacks, GenerationOutcome, StateListener
from buildpilot.core.cancellation import CancellationToken
from buildpilot.core.errors import BuildCancelledError
from buildpilot.core.event_relay import EventRelay
from buildpilot.core.generation import GenerationRequest, GenerationService
from buildpilot.db.store import ProjectStore
from buildpilot.models.events import Actor, EventType, LogLevel
from buildpilot.models.project import (
    Message,
    MessageRole,
    MessageType,
    Phase,
    PhaseStatus,
    Project,
    ProjectStatus,
)

logger = logging.getLogger(__name__)

Sleeper: TypeAlias = Callable[[float], Awaitable[None]]

MAX_PHASE_RETRIES = 3
PHASE_RETRY_DELAY_SECONDS = 5.0
AUDIT_SOURCE = "build.sequencer"


class BuildOutcome(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    BACKEND_REQUIRED = "backend_required"


def actor_for(project: Project) -> Actor:
    if project.owner_email:
        return Actor(user_id=project.owner_id, email=project.owner_email)
    return Actor(user_id=project.owner_id)


class PhaseSequencer:
    """Run phases in order with a fixed-delay, bounded phase retry policy.

    Only ``BuildCancelledError`` escapes ``run``; every generation failure is
    turned into persisted state, an audit entry, and a lifecycle event.
    """

    def __init__(
        self,
        *,
        store: ProjectStore,
        relay: EventRelay,
        generation: GenerationService,
        max_retries: int = MAX_PHASE_RETRIES,
        retry_delay_seconds: float = PHASE_RETRY_DELAY_SECONDS,
        sleeper: Sleeper | None = None,
    ) -> None:
        self._store = store
        self._relay = relay
        self._generation = generation
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._sleep = sleeper

    @property
    def max_attempts(self) -> int:
        return self._max_retries + 1

    async def run(
        self,
        project: Project,
        *,
        prompt: str,
        images: list[str] | None = None,
        token: CancellationToken,
        on_change: StateListener | None = None,
    ) -> BuildOutcome:
        callbacks = BuildCallbacks(
            project,
            store=self._store,
            relay=self._relay,
            token=token,
            prompt=prompt,
            on_change=on_change,
        )
        if callbacks.state.is_flat:
            return await self._run_flat(callbacks, prompt, images or [], token)
        return await self._run_phases(callbacks, images or [], token)

    async def _run_flat(
        self,
        callbacks: BuildCallbacks,
        prompt: str,
        images: list[str],
        token: CancellationToken,
    ) -> BuildOutcome:
        project = callbacks.project
        request = GenerationRequest(
            project=project,
            instruction=prompt,
            images=images,
            context=list(project.messages),
        )
        succeeded, error = await self._attempt(callbacks, request, token)

        if callbacks.outcome is GenerationOutcome.BACKEND_REQUIRED:
            return BuildOutcome.BACKEND_REQUIRED

        if succeeded:
            if project.status is not ProjectStatus.IDLE:
                project.status = ProjectStatus.IDLE
                await callbacks.persist()
            token.raise_if_cancelled()
            self._emit(project, EventType.BUILD_COMPLETED, {"phases": 0})
            return BuildOutcome.COMPLETED

        if callbacks.outcome is not GenerationOutcome.FAILED:
            await callbacks.on_final_error(error, callbacks.state.plan)
        self._emit(project, EventType.BUILD_FAILED, {"error": error})
        return BuildOutcome.FAILED

    async def _run_phases(
        self,
        callbacks: BuildCallbacks,
        images: list[str],
        token: CancellationToken,
    ) -> BuildOutcome:
        project = callbacks.project
        state = callbacks.state
        phases = state.phases or []
        index = state.current_phase_index

        while index < len(phases):
            phase = phases[index]
            if phase.status is PhaseStatus.COMPLETED:
                index += 1
                continue

            token.raise_if_cancelled()
            phase.status = PhaseStatus.ACTIVE
            state.current_phase_index = index
            project.status = ProjectStatus.GENERATING
            self._emit(
                project,
                EventType.BUILD_PHASE_STARTED,
                {"phase_index": index, "title": phase.title, "attempt": phase.retry_count + 1},
            )
            if phase.retry_count == 0:
                state.reset_steps()
            else:
                state.error = (
                    f"Retrying Phase (Attempt {phase.retry_count + 1}/{self.max_attempts})"
                )
            await callbacks.persist()

            request = GenerationRequest(
                project=project,
                instruction=self._phase_instruction(phase, index, len(phases)),
                images=images,
                context=list(project.messages),
                phase_title=phase.title,
            )
            succeeded, error = await self._attempt(callbacks, request, token)

            if callbacks.outcome is GenerationOutcome.BACKEND_REQUIRED:
                phase.status = PhaseStatus.PENDING
                project.status = ProjectStatus.IDLE
                await callbacks.persist()
                return BuildOutcome.BACKEND_REQUIRED

            if succeeded:
                phase.status = PhaseStatus.COMPLETED
                await callbacks.persist()
                token.raise_if_cancelled()
                self._emit(
                    project,
                    EventType.BUILD_PHASE_COMPLETED,
                    {"phase_index": index, "title": phase.title},
                )
                index += 1
                continue

            if phase.retry_count < self._max_retries:
                phase.retry_count += 1
                logger.info(
                    "Phase %d of project %s failed, retrying (%d/%d): %s",
                    index,
                    project.id,
                    phase.retry_count,
                    self._max_retries,
                    error,
                )
                project.append_message(
                    Message(
                        role=MessageRole.SYSTEM,
                        content=(
                            f"Phase '{phase.title}' failed: {error}. Retrying automatically "
                            f"(attempt {phase.retry_count + 1}/{self.max_attempts})."
                        ),
                        type=MessageType.BUILD_PHASE,
                    )
                )
                await callbacks.persist()
                await self._wait(token)
                continue

            return await self._fail_phase(callbacks, phase, index, error)

        project.status = ProjectStatus.IDLE
        await callbacks.persist()
        token.raise_if_cancelled()
        self._emit(project, EventType.BUILD_COMPLETED, {"phases": len(phases)})
        return BuildOutcome.COMPLETED

    async def _fail_phase(
        self,
        callbacks: BuildCallbacks,
        phase: Phase,
        index: int,
        error: str,
    ) -> BuildOutcome:
        project = callbacks.project
        state = callbacks.state
        message = f"Phase failed after {self.max_attempts} attempts: {error}"

        phase.status = PhaseStatus.FAILED
        state.error = message
        callbacks.append_failure_summary(
            f"Build failed during phase '{phase.title}': {error}",
            [item.title for item in state.phases or []],
        )
        project.status = ProjectStatus.IDLE
        await callbacks.persist()
        self._relay.log(
            LogLevel.CRITICAL,
            AUDIT_SOURCE,
            message,
            project_id=project.id,
            meta={"phase_index": index, "phase": phase.title},
        )
        self._emit(
            project,
            EventType.BUILD_FAILED,
            {"phase_index": index, "title": phase.title, "error": error},
        )
        return BuildOutcome.FAILED

    async def _attempt(
        self,
        callbacks: BuildCallbacks,
        request: GenerationRequest,
        token: CancellationToken,
    ) -> tuple[bool, str]:
        """Run one generation pass. Cancellation wins over any result."""
        callbacks.reset_outcome()
        token.raise_if_cancelled()
        try:
            succeeded = await self._generation.run(request, callbacks, token)
        except BuildCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            token.raise_if_cancelled()
            logger.warning("Generation attempt failed for project %s: %s", request.project.id, exc)
            return False, str(exc) or type(exc).__name__
        token.raise_if_cancelled()

        if callbacks.outcome is GenerationOutcome.FAILED:
            succeeded = False
        if succeeded:
            return True, ""
        if callbacks.outcome is None:
            # state.error may still hold the sequencer's own retry notice
            return False, "Generation did not complete"
        return False, callbacks.state.error or "Generation did not complete"

    async def _wait(self, token: CancellationToken) -> None:
        if self._sleep is None:
            await token.sleep(self._retry_delay)
            return
        token.raise_if_cancelled()
        await self._sleep(self._retry_delay)
        token.raise_if_cancelled()

    def _emit(self, project: Project, event_type: EventType, data: dict[str, object]) -> None:
        self._relay.emit(event_type, data, project_id=project.id, actor=actor_for(project))

    @staticmethod
    def _phase_instruction(phase: Phase, index: int, total: int) -> str:
        header = f"Phase {index + 1}/{total}: {phase.title}"
        if phase.description:
            return f"{header}\n\n{phase.description}"
        return header
