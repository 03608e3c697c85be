"""
Rendering surfaces: where figures are actually painted.

- Out-of-process worker (default): `process.py` + `worker.py`
- In-process worker thread: `thread.py`
- Topic -> renderer dispatch shared by both: `renderers.py`
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Protocol

from anyio.abc import TaskGroup

if TYPE_CHECKING:
    from chart_render_service.bus import CorrelationBus
    from chart_render_service.config import Settings


class RenderSurface(Protocol):
    """Receives render requests and reports each result to the bus by id."""

    async def start(self, bus: "CorrelationBus", task_group: TaskGroup) -> None:
        ...

    def submit(self, message: Dict[str, Any]) -> None:
        """Queue `{topic, id, info, options}`; never blocks."""

    def discard(self, request_id: str) -> None:
        """Forget work for a request nobody is waiting on any more."""

    async def aclose(self) -> None:
        ...


def build_surface(settings: "Settings") -> RenderSurface:
    if settings.surface == "thread":
        from chart_render_service.surface.thread import ThreadRenderSurface

        return ThreadRenderSurface()
    from chart_render_service.surface.process import ProcessRenderSurface

    return ProcessRenderSurface()


__all__ = ["RenderSurface", "build_surface"]
