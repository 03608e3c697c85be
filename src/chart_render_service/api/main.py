from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import anyio
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from chart_render_service import __version__
from chart_render_service.api.frontend import RenderFrontend, RenderService
from chart_render_service.api.http_logging import install_http_logging
from chart_render_service.bus import CorrelationBus
from chart_render_service.config import Settings, load_settings
from chart_render_service.events import AFTER_CONNECT, LifecycleEvents, install_lifecycle_logging
from chart_render_service.registry import ComponentRegistry, default_registry
from chart_render_service.surface import RenderSurface, build_surface

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    registry: Optional[ComponentRegistry] = None,
    surface: Optional[RenderSurface] = None,
    events: Optional[LifecycleEvents] = None,
    announce: bool = True,
) -> FastAPI:
    """
    Build the service app.

    With `announce`, `after-connect` fires at lifespan startup. Servers that know when their
    socket is bound (see `api.server.AnnouncingServer`) pass `announce=False` and emit it themselves.
    """
    settings = settings or load_settings()
    registry = registry if registry is not None else default_registry()
    events = events or LifecycleEvents()
    install_lifecycle_logging(events)
    surface = surface or build_surface(settings)
    bus = CorrelationBus(surface)
    service = RenderService(settings=settings, registry=registry, bus=bus, events=events)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with anyio.create_task_group() as tg:
            await surface.start(bus, tg)
            if announce:
                events.emit(AFTER_CONNECT, {"port": settings.port})
            try:
                yield
            finally:
                await surface.aclose()
                tg.cancel_scope.cancel()

    app = FastAPI(
        title="chart-render-service",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.service = service

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = f"err_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        logger.error("500 internal_error requestId=%s path=%s err=%r", request_id, request.url.path, exc)
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": "internal_error", "requestId": request_id},
        )

    # Every path goes through the frontend: `/ping`, `/<component>`, and 404 for the rest.
    app.add_route("/{route:path}", RenderFrontend(service), include_in_schema=False)
    install_http_logging(app, enabled=settings.http_log)
    return app
