"""Shared API dependency providers."""

from __future__ import annotations

from functools import lru_cache

from buildpilot.clients.generation_client import RemoteGenerationService, RemotePhasePlanner
from buildpilot.config import get_settings
from buildpilot.core.build_trigger import BuildTrigger
from buildpilot.core.cancellation import CancellationRegistry
from buildpilot.core.event_relay import EventRelay
from buildpilot.core.project_manager import ProjectManager
from buildpilot.core.sequencer import PhaseSequencer
from buildpilot.core.update_hub import ProjectUpdateHub
from buildpilot.db.store import SQLiteStore

_REGISTRY = CancellationRegistry()
_UPDATE_HUB = ProjectUpdateHub()


@lru_cache
def get_store() -> SQLiteStore:
    settings = get_settings()
    settings.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
    return SQLiteStore(db_path=settings.DATABASE_PATH)


@lru_cache
def get_event_relay() -> EventRelay:
    settings = get_settings()
    return EventRelay(
        get_store(),
        webhook_url=settings.WEBHOOK_URL,
        environment=settings.ENVIRONMENT,
        max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
    )


def get_registry() -> CancellationRegistry:
    return _REGISTRY


def get_update_hub() -> ProjectUpdateHub:
    return _UPDATE_HUB


def get_project_manager() -> ProjectManager:
    return ProjectManager(store=get_store(), relay=get_event_relay())


@lru_cache
def get_build_trigger() -> BuildTrigger:
    settings = get_settings()
    sequencer = PhaseSequencer(
        store=get_store(),
        relay=get_event_relay(),
        generation=RemoteGenerationService(
            settings.GENERATION_URL,
            timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
        ),
        max_retries=settings.MAX_PHASE_RETRIES,
        retry_delay_seconds=settings.PHASE_RETRY_DELAY_SECONDS,
    )
    return BuildTrigger(
        store=get_store(),
        registry=get_registry(),
        sequencer=sequencer,
        relay=get_event_relay(),
        planner=RemotePhasePlanner(
            settings.PLANNER_URL,
            timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
        ),
        on_change=get_update_hub().publish,
    )
