from __future__ import annotations

import asyncio
import base64
import io
import json
import sys

import anyio

from chart_render_service.bus import CorrelationBus, RenderReply
from chart_render_service.config import Settings
from chart_render_service.surface import build_surface
from chart_render_service.surface.process import ProcessRenderSurface
from chart_render_service.surface.thread import ThreadRenderSurface
from chart_render_service.surface.worker import _Inbox, _drain, _read_lines, serve
from fakes import VALID_FIGURE


def test_build_surface_follows_settings():
    assert isinstance(build_surface(Settings(surface="thread")), ThreadRenderSurface)
    assert isinstance(build_surface(Settings(surface="process")), ProcessRenderSurface)


def test_thread_surface_renders_and_delivers():
    async def main() -> RenderReply:
        surface = ThreadRenderSurface()
        bus = CorrelationBus(surface)
        async with anyio.create_task_group() as tg:
            await surface.start(bus, tg)
            with anyio.fail_after(30):
                reply = await bus.request(
                    "plotly-graph", "t1", {"figure": VALID_FIGURE, "format": "png", "width": 100, "height": 80}, {}
                )
            await surface.aclose()
        return reply

    reply = asyncio.run(main())
    assert reply.error_code == 0
    assert base64.b64decode(reply.result["imgData"]).startswith(b"\x89PNG")


def test_thread_surface_skips_discarded_work():
    async def main() -> list[str]:
        surface = ThreadRenderSurface()
        delivered: list[str] = []

        class Bus:
            def deliver(self, request_id: str, error_code: int = 0, result=None) -> bool:
                delivered.append(request_id)
                return True

        async with anyio.create_task_group() as tg:
            await surface.start(Bus(), tg)  # type: ignore[arg-type]
            surface.submit({"topic": "nope", "id": "keep", "info": {}})
            surface.submit({"topic": "nope", "id": "drop", "info": {}})
            surface.discard("drop")
        return delivered

    assert asyncio.run(main()) == ["keep"]


def _lines(*messages) -> list[bytes]:
    return [json.dumps(m).encode("utf-8") + b"\n" for m in messages]


def test_worker_skips_work_discarded_while_queued():
    inbox = _Inbox()
    _read_lines(
        _lines(
            {"topic": "nope", "id": "a", "info": {}, "options": {}},
            {"topic": "nope", "id": "b", "info": {}, "options": {}},
            {"type": "discard", "id": "b"},
        )
        + [b"not json\n"],
        inbox,
    )
    stdout = io.BytesIO()

    _drain(inbox, stdout)

    replies = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert [r["id"] for r in replies] == ["a"]
    assert replies[0]["errorCode"] == 525
    assert inbox.discarded == frozenset()


def test_worker_ignores_discard_for_answered_or_unknown_ids():
    inbox = _Inbox()
    stdout = io.BytesIO()
    inbox.put({"topic": "nope", "id": "a", "info": {}, "options": {}})
    inbox.work.put(None)
    _drain(inbox, stdout)
    assert [json.loads(line)["id"] for line in stdout.getvalue().splitlines()] == ["a"]

    # Reply already on the pipe when the client went away.
    inbox.discard("a")
    inbox.discard("never-seen")
    assert inbox.discarded == frozenset()


def test_worker_serve_replies_per_request():
    stdin = io.BytesIO(b"".join(_lines({"topic": "nope", "id": "a", "info": {}, "options": {}})))
    stdout = io.BytesIO()

    assert serve(stdin, stdout) == 0

    assert [json.loads(line)["id"] for line in stdout.getvalue().splitlines()] == ["a"]


def test_process_surface_round_trip():
    async def main() -> RenderReply:
        surface = ProcessRenderSurface()
        bus = CorrelationBus(surface)
        async with anyio.create_task_group() as tg:
            await surface.start(bus, tg)
            try:
                with anyio.fail_after(60):
                    reply = await bus.request(
                        "plotly-graph",
                        "p1",
                        {"figure": VALID_FIGURE, "format": "png", "width": 100, "height": 80},
                        {"debug": False},
                    )
            finally:
                await surface.aclose()
                tg.cancel_scope.cancel()
        return reply

    reply = asyncio.run(main())
    assert reply.error_code == 0
    assert base64.b64decode(reply.result["imgData"]).startswith(b"\x89PNG")


def test_process_surface_fails_waiting_requests_when_worker_dies_and_restarts():
    # Reads one request and exits without answering.
    command = [sys.executable, "-c", "import sys; sys.stdin.readline()"]

    async def main() -> tuple[list[RenderReply], int]:
        surface = ProcessRenderSurface(command=command, restart_delay=0.01)
        bus = CorrelationBus(surface)
        replies: list[RenderReply] = []
        async with anyio.create_task_group() as tg:
            await surface.start(bus, tg)
            try:
                with anyio.fail_after(20):
                    replies.append(await bus.request("plotly-graph", "d1", {}, {}))
                    while surface.restarts < 1:
                        await anyio.sleep(0.01)
                    replies.append(await bus.request("plotly-graph", "d2", {}, {}))
            finally:
                await surface.aclose()
                tg.cancel_scope.cancel()
        return replies, len(bus.pending_ids())

    replies, still_pending = asyncio.run(main())
    assert [r.error_code for r in replies] == [525, 525]
    assert json.loads(replies[0].result["msg"])["message"] == "render worker exited"
    assert json.loads(replies[0].result["msg"])["name"] == "RenderWorkerExited"
    assert still_pending == 0
