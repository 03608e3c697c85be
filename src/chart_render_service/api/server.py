from __future__ import annotations

import logging
import socket
from typing import List, Optional

import uvicorn

from chart_render_service.api.main import create_app
from chart_render_service.config import Settings
from chart_render_service.events import AFTER_CONNECT, LifecycleEvents

logger = logging.getLogger(__name__)


class AnnouncingServer(uvicorn.Server):
    """uvicorn server that emits `after-connect` once its listening sockets are bound."""

    def __init__(self, config: uvicorn.Config, events: LifecycleEvents) -> None:
        super().__init__(config)
        self._events = events

    async def startup(self, sockets: Optional[List[socket.socket]] = None) -> None:
        await super().startup(sockets=sockets)
        # `started` stays False when lifespan startup or binding failed.
        if self.started:
            self._events.emit(AFTER_CONNECT, {"port": self.bound_port()})

    def bound_port(self) -> int:
        for server in self.servers:
            for sock in server.sockets or ():
                name = sock.getsockname()
                if isinstance(name, tuple):
                    return int(name[1])
        return int(self.config.port)


def build_server(settings: Settings) -> AnnouncingServer:
    app = create_app(settings, announce=False)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )
    return AnnouncingServer(config, app.state.service.events)
