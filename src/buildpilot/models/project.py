"""Project, message, and build-state domain models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class ProjectStatus(str, Enum):
    """Whether a build is currently driving the project."""

    IDLE = "idle"
    GENERATING = "generating"


class PhaseStatus(str, Enum):
    """Lifecycle status for one build phase."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageType(str, Enum):
    """Transcript entry discriminator."""

    USER_INPUT = "user_input"
    ASSISTANT_RESPONSE = "assistant_response"
    BUILD_PLAN = "build_plan"
    BUILD_PHASE = "build_phase"
    JOB_SUMMARY = "job_summary"


class JobStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class ProjectFile(BaseModel):
    """One generated source file."""

    path: str
    content: str
    language: str | None = None


class GeneratedCode(BaseModel):
    """Code artifact produced by the generation service."""

    html: str = ""
    javascript: str = ""
    css: str = ""
    explanation: str = ""
    files: list[ProjectFile] = Field(default_factory=list)


class GenerationMeta(BaseModel):
    """Execution metadata attached to a finished job."""

    elapsed_ms: int | None = None
    credits: float | None = None


class JobSummary(BaseModel):
    title: str
    plan: list[str] = Field(default_factory=list)
    status: JobStatus


class Message(BaseModel):
    """Append-only transcript entry."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    role: MessageRole
    content: str
    images: list[str] = Field(default_factory=list)
    type: MessageType | None = None
    job_summary: JobSummary | None = None
    execution_time_ms: int | None = None
    credits_used: float | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class PhaseDraft(BaseModel):
    """Phase proposal returned by the planner."""

    title: str
    description: str = ""


class Phase(BaseModel):
    """Coarse-grained unit of a multi-phase build."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    description: str = ""
    status: PhaseStatus = PhaseStatus.PENDING
    retry_count: int = Field(default=0, ge=0)

    @classmethod
    def from_draft(cls, draft: PhaseDraft) -> Phase:
        return cls(title=draft.title, description=draft.description)


class BuildState(BaseModel):
    """Durable checkpoint of an in-flight build."""

    plan: list[str] = Field(default_factory=list)
    current_step: int = 0
    last_completed_step: int = -1
    error: str | None = None
    phases: list[Phase] | None = None
    current_phase_index: int = 0

    @field_validator("phases")
    @classmethod
    def _phases_not_empty(cls, value: list[Phase] | None) -> list[Phase] | None:
        if value is not None and not value:
            msg = "phase list must be non-empty when present"
            raise ValueError(msg)
        return value

    @classmethod
    def seed(cls, phases: list[Phase] | None = None) -> BuildState:
        """Create the state for a fresh build.

        Every seeded phase must be pending with no retries spent.
        """
        if phases is not None:
            for phase in phases:
                if phase.retry_count != 0 or phase.status is not PhaseStatus.PENDING:
                    msg = f"phase {phase.title!r} must start pending with retry_count 0"
                    raise ValueError(msg)
        return cls(phases=phases)

    @property
    def is_flat(self) -> bool:
        return self.phases is None

    def current_phase(self) -> Phase | None:
        if self.phases is None or not 0 <= self.current_phase_index < len(self.phases):
            return None
        return self.phases[self.current_phase_index]

    def reset_steps(self) -> None:
        self.plan = []
        self.current_step = 0
        self.last_completed_step = -1
        self.error = None


class Project(BaseModel):
    """Aggregate root: code artifact, transcript, and build checkpoint."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    owner_email: str | None = None
    name: str = "New Project"
    code: GeneratedCode = Field(default_factory=GeneratedCode)
    messages: list[Message] = Field(default_factory=list)
    status: ProjectStatus = ProjectStatus.IDLE
    build_state: BuildState | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def touch(self) -> None:
        """Update mutation timestamp."""
        self.updated_at = datetime.now(UTC)

    def append_message(self, message: Message) -> Message:
        self.messages.append(message)
        return message

    def last_user_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.role is MessageRole.USER:
                return message
        return None
