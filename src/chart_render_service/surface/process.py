from __future__ import annotations

import json
import logging
import math
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import anyio
from anyio.abc import Process, TaskGroup
from anyio.streams.buffered import BufferedByteReceiveStream

from chart_render_service.bus import CorrelationBus
from chart_render_service.surface.renderers import RENDER_ERROR, error_msg

logger = logging.getLogger(__name__)

WORKER_MODULE = "chart_render_service.surface.worker"
MAX_LINE_BYTES = 512 * 1024 * 1024
SHUTDOWN_GRACE_SEC = 5.0
RESTART_DELAY_SEC = 1.0


class RenderWorkerExited(RuntimeError):
    """The render worker went away while requests were waiting on it."""


def _worker_env() -> Dict[str, str]:
    # Make the package importable in the child even when running from a source checkout.
    src = str(Path(__file__).resolve().parents[2])
    env = dict(os.environ)
    existing = env.get("PYTHONPATH") or ""
    env["PYTHONPATH"] = src + (os.pathsep + existing if existing else "")
    return env


class ProcessRenderSurface:
    """
    Out-of-process surface: a worker subprocess speaking JSON lines.

    stdin  <- `{topic, id, info, options}` render requests and `{type: "discard", id}` notices
    stdout -> `{id, errorCode, result}` replies

    When the worker dies every request waiting on it fails with 525 and a new worker
    is started; requests submitted in the meantime stay queued for the replacement.
    """

    def __init__(self, command: Optional[Sequence[str]] = None, *, restart_delay: float = RESTART_DELAY_SEC) -> None:
        self._command: List[str] = list(command or [sys.executable, "-m", WORKER_MODULE])
        self._restart_delay = restart_delay
        self._outbox_send, self._outbox_receive = anyio.create_memory_object_stream[bytes](math.inf)
        self._bus: Optional[CorrelationBus] = None
        self._process: Optional[Process] = None
        self._closing = False
        self._broken: Optional[str] = None
        self.restarts = 0

    async def start(self, bus: CorrelationBus, task_group: TaskGroup) -> None:
        self._bus = bus
        process = await self._spawn()
        task_group.start_soon(self._supervise, process)

    async def _spawn(self) -> Process:
        process = await anyio.open_process(self._command, stderr=None, env=_worker_env())
        logger.info("render worker started pid=%s", process.pid)
        self._process = process
        return process

    def submit(self, message: Dict[str, Any]) -> None:
        if self._broken is not None:
            assert self._bus is not None
            self._bus.deliver(str(message.get("id") or ""), RENDER_ERROR, {"msg": self._broken})
            return
        line = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8") + b"\n"
        self._outbox_send.send_nowait(line)

    def discard(self, request_id: str) -> None:
        line = json.dumps({"type": "discard", "id": request_id}).encode("utf-8") + b"\n"
        try:
            self._outbox_send.send_nowait(line)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("render worker gone; discard not sent id=%s", request_id)

    async def _supervise(self, process: Process) -> None:
        try:
            while True:
                async with anyio.create_task_group() as tg:
                    tg.start_soon(self._write_requests, process)
                    await self._read_replies(process)
                    tg.cancel_scope.cancel()
                if self._closing:
                    return

                failed = self._fail_in_flight(RenderWorkerExited("render worker exited"))
                self._process = None
                await self._stop(process)
                logger.error(
                    "render worker exited returncode=%s failed_requests=%s", process.returncode, failed
                )

                await anyio.sleep(self._restart_delay)
                if self._closing:
                    return
                try:
                    process = await self._spawn()
                except OSError as exc:
                    logger.error("render worker restart failed err=%r", exc)
                    self._broken = error_msg(exc)
                    self._fail_in_flight(exc)
                    return
                if self._closing:
                    self._process = None
                    await self._stop(process)
                    return
                self.restarts += 1
        finally:
            self._outbox_receive.close()

    def _fail_in_flight(self, exc: BaseException) -> int:
        assert self._bus is not None
        return self._bus.fail_all(RENDER_ERROR, error_msg(exc))

    async def _write_requests(self, process: Process) -> None:
        assert process.stdin is not None
        async for line in self._outbox_receive:
            try:
                await process.stdin.send(line)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError) as exc:
                logger.error("render worker stdin closed err=%r", exc)
                return

    async def _read_replies(self, process: Process) -> None:
        assert self._bus is not None and process.stdout is not None
        stream = BufferedByteReceiveStream(process.stdout)
        while True:
            try:
                line = await stream.receive_until(b"\n", MAX_LINE_BYTES)
            except (anyio.EndOfStream, anyio.IncompleteRead):
                return
            except anyio.DelimiterNotFound:
                logger.error("render worker reply exceeded %s bytes; stopped reading", MAX_LINE_BYTES)
                return

            try:
                reply = json.loads(line)
            except ValueError:
                logger.warning("malformed render worker reply bytes=%s", len(line))
                continue
            if not isinstance(reply, dict):
                continue
            result = reply.get("result") if isinstance(reply.get("result"), dict) else {}
            self._bus.deliver(str(reply.get("id") or ""), int(reply.get("errorCode") or 0), result)

    async def _stop(self, process: Process) -> None:
        with anyio.CancelScope(shield=True):
            if process.stdin is not None:
                await process.stdin.aclose()
            with anyio.move_on_after(SHUTDOWN_GRACE_SEC):
                await process.wait()
            if process.returncode is None:
                process.kill()
            await process.aclose()

    async def aclose(self) -> None:
        self._closing = True
        self._outbox_send.close()
        process, self._process = self._process, None
        if process is None:
            return
        await self._stop(process)
        logger.info("render worker stopped returncode=%s", process.returncode)
