"""Entry point for user instructions: seed build state and launch the sequencer."""

from __future__ import annotations

import asyncio
import logging

from buildpilot.core.callbacks import StateListener
from buildpilot.core.cancellation import CancellationRegistry, CancellationToken
from buildpilot.core.errors import BuildCancelledError, BuildConflictError, ProjectNotFoundError
from buildpilot.core.event_relay import EventRelay
from buildpilot.core.generation import PhasePlanner
from buildpilot.core.planning import PlanningPolicy, should_plan_phases
from buildpilot.core.sequencer import BuildOutcome, PhaseSequencer, actor_for
from buildpilot.db.store import ProjectStore
from buildpilot.models.events import EventType, LogLevel
from buildpilot.models.project import (
    BuildState,
    Message,
    MessageRole,
    MessageType,
    Phase,
    PhaseStatus,
    Project,
    ProjectStatus,
)

logger = logging.getLogger(__name__)

AUDIT_SOURCE = "build.trigger"


class BuildTrigger:
    """Start, stop, retry, and resume builds; one active build per project."""

    def __init__(
        self,
        *,
        store: ProjectStore,
        registry: CancellationRegistry,
        sequencer: PhaseSequencer,
        relay: EventRelay,
        planner: PhasePlanner | None = None,
        policy: PlanningPolicy = should_plan_phases,
        on_change: StateListener | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._sequencer = sequencer
        self._relay = relay
        self._planner = planner
        self._policy = policy
        self._on_change = on_change
        self._tasks: dict[str, asyncio.Task[BuildOutcome]] = {}

    async def trigger_build(
        self,
        project: Project,
        prompt: str,
        images: list[str] | None = None,
    ) -> asyncio.Task[BuildOutcome]:
        """Record the instruction, seed build state, and start the build task.

        Returns as soon as the task is scheduled; progress arrives through the
        state listener.
        """
        images = list(images or [])
        token = self._registry.start(project.id)
        try:
            self._record_instruction(project, prompt, images)

            phases: list[Phase] | None = None
            if self._policy(prompt):
                phases = await self._plan(project, prompt, images, token)
            token.raise_if_cancelled()

            project.build_state = BuildState.seed(phases)
            project.status = ProjectStatus.GENERATING
            await self._save(project)
        except BaseException:
            self._registry.release(project.id, token)
            raise

        self._relay.emit(
            EventType.BUILD_STARTED,
            {"phases": len(phases) if phases else 0, "prompt_chars": len(prompt)},
            project_id=project.id,
            actor=actor_for(project),
        )
        return self._launch(project, prompt, images, token)

    async def stop_build(self, project_id: str) -> bool:
        """Cancel the active build, if any, and return the project to idle."""
        stopped = self._registry.stop(project_id)
        project = await self._store.get_project(project_id)
        if project is not None and project.status is ProjectStatus.GENERATING:
            project.status = ProjectStatus.IDLE
            await self._save(project)
        if stopped:
            logger.info("Build stopped for project %s", project_id)
        return stopped

    async def retry_last(self, project_id: str) -> asyncio.Task[BuildOutcome]:
        """Re-run the most recent user instruction."""
        project = await self._require(project_id)
        last = project.last_user_message()
        if last is None:
            msg = "Project has no instruction to retry"
            raise BuildConflictError(msg)
        return await self.trigger_build(project, last.content, [])

    async def resume_build(self, project_id: str) -> asyncio.Task[BuildOutcome]:
        """Continue a persisted phased build at its current phase."""
        project = await self._require(project_id)
        state = project.build_state
        if state is None or state.phases is None:
            msg = "Project has no phased build to resume"
            raise BuildConflictError(msg)
        if all(phase.status is PhaseStatus.COMPLETED for phase in state.phases):
            msg = "Build already completed"
            raise BuildConflictError(msg)
        if self._registry.is_active(project_id):
            msg = "A build is already running for this project"
            raise BuildConflictError(msg)

        phase = state.current_phase()
        if phase is not None and phase.status is PhaseStatus.FAILED:
            phase.status = PhaseStatus.PENDING
            phase.retry_count = 0

        last = project.last_user_message()
        prompt = last.content if last is not None else ""
        token = self._registry.start(project_id)
        project.status = ProjectStatus.GENERATING
        try:
            await self._save(project)
        except BaseException:
            self._registry.release(project_id, token)
            raise
        self._relay.emit(
            EventType.BUILD_STARTED,
            {"resumed": True, "phase_index": state.current_phase_index},
            project_id=project.id,
            actor=actor_for(project),
        )
        return self._launch(project, prompt, [], token)

    async def clear_build_state(self, project_id: str) -> Project:
        project = await self._require(project_id)
        if self._registry.is_active(project_id) or project.status is ProjectStatus.GENERATING:
            msg = "Cannot clear build state while a build is running"
            raise BuildConflictError(msg)
        project.build_state = None
        await self._save(project)
        return project

    def active_task(self, project_id: str) -> asyncio.Task[BuildOutcome] | None:
        return self._tasks.get(project_id)

    async def shutdown(self) -> None:
        """Cancel every running build and wait for the tasks to unwind."""
        for project_id in list(self._tasks):
            self._registry.stop(project_id)
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def _launch(
        self,
        project: Project,
        prompt: str,
        images: list[str],
        token: CancellationToken,
    ) -> asyncio.Task[BuildOutcome]:
        task = asyncio.create_task(self._run(project, prompt, images, token))
        self._tasks[project.id] = task

        def _forget(done: asyncio.Task[BuildOutcome]) -> None:
            if self._tasks.get(project.id) is done:
                del self._tasks[project.id]

        task.add_done_callback(_forget)
        return task

    async def _run(
        self,
        project: Project,
        prompt: str,
        images: list[str],
        token: CancellationToken,
    ) -> BuildOutcome:
        try:
            return await self._sequencer.run(
                project,
                prompt=prompt,
                images=images,
                token=token,
                on_change=self._on_change,
            )
        except BuildCancelledError:
            logger.info("Build cancelled for project %s", project.id)
            return BuildOutcome.CANCELLED
        except Exception as exc:  # noqa: BLE001
            logger.exception("Build crashed for project %s", project.id)
            self._relay.log(
                LogLevel.CRITICAL,
                AUDIT_SOURCE,
                f"Unhandled build failure: {exc}",
                project_id=project.id,
            )
            if not token.cancelled:
                await self._recover_idle(project, str(exc))
            return BuildOutcome.FAILED
        finally:
            self._registry.release(project.id, token)

    async def _recover_idle(self, project: Project, error: str) -> None:
        project.status = ProjectStatus.IDLE
        if project.build_state is not None:
            project.build_state.error = error
        try:
            await self._save(project)
        except Exception:  # noqa: BLE001
            logger.warning("Could not return project %s to idle", project.id, exc_info=True)

    async def _plan(
        self,
        project: Project,
        prompt: str,
        images: list[str],
        token: CancellationToken,
    ) -> list[Phase] | None:
        if self._planner is None:
            return None
        try:
            drafts = await self._planner.plan(project, prompt, images)
        except BuildCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            token.raise_if_cancelled()
            logger.warning("Phase planning failed for project %s: %s", project.id, exc)
            self._relay.log(
                LogLevel.WARNING,
                AUDIT_SOURCE,
                f"Phase planning failed, running a single-phase build: {exc}",
                project_id=project.id,
            )
            return None
        if not drafts:
            return None

        phases = [Phase.from_draft(draft) for draft in drafts]
        lines = [f"{number}. **{phase.title}**" for number, phase in enumerate(phases, start=1)]
        project.append_message(
            Message(
                role=MessageRole.ASSISTANT,
                content="Build plan:\n\n" + "\n".join(lines),
                type=MessageType.BUILD_PLAN,
            )
        )
        return phases

    @staticmethod
    def _record_instruction(project: Project, prompt: str, images: list[str]) -> None:
        last = project.messages[-1] if project.messages else None
        if last is not None and last.role is MessageRole.USER and last.content == prompt:
            last.images.extend(image for image in images if image not in last.images)
            return
        project.append_message(
            Message(
                role=MessageRole.USER,
                content=prompt,
                images=images,
                type=MessageType.USER_INPUT,
            )
        )

    async def _require(self, project_id: str) -> Project:
        project = await self._store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def _save(self, project: Project) -> None:
        await self._store.save_project(project)
        if self._on_change is not None:
            self._on_change(project)
