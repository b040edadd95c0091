"""FastAPI app entrypoint."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect

from buildpilot.api.deps import get_build_trigger, get_event_relay, get_update_hub
from buildpilot.api.routes.builds import router as builds_router
from buildpilot.api.routes.events import router as events_router
from buildpilot.api.routes.projects import router as projects_router
from buildpilot.config import VERSION, configure_logging
from buildpilot.core.update_hub import ProjectUpdateHub


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    yield
    trigger = app.dependency_overrides.get(get_build_trigger, get_build_trigger)()
    relay = app.dependency_overrides.get(get_event_relay, get_event_relay)()
    await trigger.shutdown()
    await relay.drain()


def create_app() -> FastAPI:
    app = FastAPI(title="buildpilot API", version=VERSION, lifespan=lifespan)
    app.include_router(projects_router)
    app.include_router(builds_router)
    app.include_router(events_router)

    @app.get("/api/v1/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.websocket("/api/v1/projects/{project_id}/ws")
    async def project_updates(
        project_id: str,
        websocket: WebSocket,
        hub: ProjectUpdateHub = Depends(get_update_hub),
    ) -> None:
        await websocket.accept()
        queue = hub.subscribe(project_id)

        async def _forward() -> None:
            while True:
                await websocket.send_json(await queue.get())

        forwarder = asyncio.create_task(_forward())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return
        finally:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
            hub.unsubscribe(project_id, queue)

    return app


app = create_app()


def run() -> None:
    uvicorn.run("buildpilot.api.app:app", host="0.0.0.0", port=8000, reload=False)
