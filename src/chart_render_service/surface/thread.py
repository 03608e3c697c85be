from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set

import anyio
from anyio.abc import TaskGroup

from chart_render_service.bus import CorrelationBus
from chart_render_service.surface.renderers import render_message

logger = logging.getLogger(__name__)


class ThreadRenderSurface:
    """Renders in a worker thread, one figure at a time."""

    def __init__(self) -> None:
        self._bus: Optional[CorrelationBus] = None
        self._task_group: Optional[TaskGroup] = None
        self._limiter: Optional[anyio.CapacityLimiter] = None
        self._discarded: Set[str] = set()

    async def start(self, bus: CorrelationBus, task_group: TaskGroup) -> None:
        self._bus = bus
        self._task_group = task_group
        self._limiter = anyio.CapacityLimiter(1)

    def submit(self, message: Dict[str, Any]) -> None:
        if self._task_group is None:
            raise RuntimeError("surface not started")
        self._task_group.start_soon(self._render, message)

    def discard(self, request_id: str) -> None:
        self._discarded.add(request_id)

    async def _render(self, message: Dict[str, Any]) -> None:
        request_id = str(message.get("id") or "")
        assert self._limiter is not None
        async with self._limiter:
            if request_id in self._discarded:
                self._discarded.discard(request_id)
                logger.debug("skipping discarded render id=%s", request_id)
                return
            error_code, result = await anyio.to_thread.run_sync(render_message, message)

        if request_id in self._discarded:
            self._discarded.discard(request_id)
            return
        assert self._bus is not None
        self._bus.deliver(request_id, error_code, result)

    async def aclose(self) -> None:
        self._discarded.clear()
