"""
One-shot, id-keyed channel between request pipelines and the rendering surface.

Each in-flight request owns exactly one subscription. The first delivery for an
id resolves it and removes it; anything arriving later for that id is dropped.
A request that stops waiting (disconnect, timeout) removes its subscription and
sends the surface a discard notice for the abandoned work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import anyio
from anyio.streams.memory import MemoryObjectSendStream

if TYPE_CHECKING:
    from chart_render_service.surface import RenderSurface

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderReply:
    error_code: int = 0
    result: Dict[str, Any] = field(default_factory=dict)


class CorrelationBus:
    def __init__(self, surface: Optional["RenderSurface"] = None) -> None:
        self._surface = surface
        self._pending: Dict[str, MemoryObjectSendStream[RenderReply]] = {}

    def pending_ids(self) -> List[str]:
        return list(self._pending)

    async def request(
        self,
        topic: str,
        request_id: str,
        info: Dict[str, Any],
        options: Dict[str, Any],
    ) -> RenderReply:
        """Publish a render request and wait for its single reply."""
        if self._surface is None:
            raise RuntimeError("no rendering surface attached")
        if request_id in self._pending:
            raise ValueError(f"request id already in flight: {request_id}")

        send_stream, receive_stream = anyio.create_memory_object_stream[RenderReply](1)
        self._pending[request_id] = send_stream
        try:
            self._surface.submit({"topic": topic, "id": request_id, "info": dict(info), "options": dict(options)})
            with receive_stream:
                return await receive_stream.receive()
        finally:
            # Still registered means nothing was delivered: the caller gave up.
            if self._pending.pop(request_id, None) is not None:
                send_stream.close()
                self._surface.discard(request_id)

    def deliver(self, request_id: str, error_code: int = 0, result: Optional[Dict[str, Any]] = None) -> bool:
        send_stream = self._pending.pop(request_id, None)
        if send_stream is None:
            logger.debug("dropping render result for unknown or finished request id=%s", request_id)
            return False
        with send_stream:
            send_stream.send_nowait(RenderReply(error_code=int(error_code or 0), result=dict(result or {})))
        return True

    def fail_all(self, error_code: int, msg: str) -> int:
        """Resolve every in-flight request with the same error; returns how many were waiting."""
        request_ids = self.pending_ids()
        for request_id in request_ids:
            self.deliver(request_id, error_code, {"msg": msg})
        return len(request_ids)
