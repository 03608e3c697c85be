from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict

from starlette.types import Receive, Send


class PipelineState(str, enum.Enum):
    RECEIVING = "receiving"
    PARSING = "parsing"
    AWAITING_RENDER = "awaiting_render"
    CONVERTING = "converting"
    REPLIED = "replied"


class Timer:
    def __init__(self) -> None:
        self._started = time.perf_counter()

    def end(self) -> float:
        """Elapsed milliseconds since creation."""
        return round((time.perf_counter() - self._started) * 1000.0, 3)


def new_request_id() -> str:
    return uuid.uuid4().hex


@dataclass
class RequestContext:
    """
    Per-connection state for one pipeline run.

    `full_info` is the request ledger: it accumulates parse, render and convert
    results and is what `export-error` / `after-convert` observers receive.
    """

    route: str
    receive: Receive
    send: Send
    id: str = field(default_factory=new_request_id)
    full_info: Dict[str, Any] = field(default_factory=dict)
    timer: Timer = field(default_factory=Timer)

    @classmethod
    def create(cls, *, route: str, port: int, receive: Receive, send: Send) -> "RequestContext":
        ctx = cls(route=route, receive=receive, send=send)
        ctx.full_info.update({"port": port, "id": ctx.id, "route": route})
        return ctx

    def merge(self, info: Dict[str, Any]) -> None:
        if info:
            self.full_info.update(info)
