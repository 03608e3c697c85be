from __future__ import annotations

import asyncio

import anyio
import httpx
import uvicorn

from chart_render_service.api.main import create_app
from chart_render_service.api.server import AnnouncingServer
from chart_render_service.config import Settings
from chart_render_service.events import LifecycleEvents
from fakes import FakeSurface, RecordingEvents, png_reply


def test_after_connect_fires_once_socket_is_bound_with_real_port():
    events = LifecycleEvents()
    recorded = RecordingEvents(events)
    app = create_app(Settings(port=0), surface=FakeSurface(reply=png_reply), events=events, announce=False)
    server = AnnouncingServer(uvicorn.Config(app, host="127.0.0.1", port=0, log_level="warning"), events)

    async def main() -> str:
        async with anyio.create_task_group() as tg:
            tg.start_soon(server.serve)
            with anyio.fail_after(10):
                while "after-connect" not in recorded.names():
                    await anyio.sleep(0.01)
            port = recorded.payload("after-connect")["port"]
            try:
                async with httpx.AsyncClient() as client:
                    res = await client.get(f"http://127.0.0.1:{port}/ping")
            finally:
                server.should_exit = True
        return res.text

    assert asyncio.run(main()) == "pong"
    assert recorded.names().count("after-connect") == 1
    assert recorded.payload("after-connect")["port"] > 0
