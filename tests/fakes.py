from __future__ import annotations

import base64
from typing import Any, Callable, Dict, List, Optional, Tuple

import anyio

from chart_render_service.bus import CorrelationBus
from chart_render_service.registry import ComponentResult

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-bytes"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")

VALID_FIGURE = {
    "data": [{"type": "scatter", "x": [1, 2, 3], "y": [2, 4, 3], "name": "a"}],
    "layout": {"title": "demo", "width": 320, "height": 240},
}

Reply = Callable[[Dict[str, Any]], Optional[Tuple[int, Dict[str, Any]]]]


def png_reply(message: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    return 0, {"imgData": PNG_B64}


class FakeSurface:
    """
    Records render requests. With `reply`, answers each request immediately;
    without it, requests stay outstanding until the test calls `bus.deliver`.
    """

    def __init__(self, reply: Optional[Reply] = None) -> None:
        self.reply = reply
        self.bus: Optional[CorrelationBus] = None
        self.submitted: List[Dict[str, Any]] = []
        self.discarded: List[str] = []
        self.closed = False

    async def start(self, bus: CorrelationBus, task_group: Any) -> None:
        self.bus = bus

    def submit(self, message: Dict[str, Any]) -> None:
        self.submitted.append(message)
        if self.reply is None:
            return
        answer = self.reply(message)
        if answer is not None and self.bus is not None:
            self.bus.deliver(message["id"], *answer)

    def discard(self, request_id: str) -> None:
        self.discarded.append(request_id)

    async def aclose(self) -> None:
        self.closed = True


def make_bus(surface: FakeSurface) -> CorrelationBus:
    bus = CorrelationBus(surface)
    surface.bus = bus
    return bus


class FakeTransport:
    """
    ASGI receive/send pair. Must be created inside a running event loop.

    After the queued request messages run out, `receive` blocks until `disconnect()`.
    With `drain_gate`, the final response frame is held until the gate is set.
    """

    def __init__(
        self,
        body: bytes = b"",
        *,
        messages: Optional[List[Dict[str, Any]]] = None,
        drain_gate: Optional[anyio.Event] = None,
        receive_error: Optional[BaseException] = None,
    ) -> None:
        self.incoming: List[Dict[str, Any]] = (
            list(messages) if messages is not None else [{"type": "http.request", "body": body, "more_body": False}]
        )
        self.sent: List[Dict[str, Any]] = []
        self.finished = False
        self._disconnected = anyio.Event()
        self._drain_gate = drain_gate
        self._receive_error = receive_error

    def disconnect(self) -> None:
        self._disconnected.set()

    async def receive(self) -> Dict[str, Any]:
        if self._receive_error is not None:
            raise self._receive_error
        if self.incoming:
            return self.incoming.pop(0)
        await self._disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: Dict[str, Any]) -> None:
        final = message.get("type") == "http.response.body" and not message.get("more_body", False)
        if final and self._drain_gate is not None:
            self.sent.append({"type": "waiting-for-drain"})
            await self._drain_gate.wait()
        self.sent.append(message)
        if final:
            self.finished = True

    @property
    def status(self) -> Optional[int]:
        for m in self.sent:
            if m.get("type") == "http.response.start":
                return m["status"]
        return None

    @property
    def headers(self) -> Dict[str, str]:
        for m in self.sent:
            if m.get("type") == "http.response.start":
                return {k.decode("latin-1"): v.decode("latin-1") for k, v in m.get("headers") or []}
        return {}

    @property
    def body(self) -> bytes:
        return b"".join(m.get("body") or b"" for m in self.sent if m.get("type") == "http.response.body")


class RecordingEvents:
    """Collects (event, payload) pairs from a LifecycleEvents instance."""

    def __init__(self, events: Any) -> None:
        self.seen: List[Tuple[str, Dict[str, Any]]] = []
        for name in ("after-connect", "export-error", "after-convert"):
            events.on(name, self._recorder(name))

    def _recorder(self, name: str) -> Callable[[Dict[str, Any]], None]:
        def _record(payload: Dict[str, Any]) -> None:
            self.seen.append((name, dict(payload)))

        return _record

    def names(self) -> List[str]:
        return [name for name, _ in self.seen]

    def payload(self, name: str) -> Dict[str, Any]:
        for n, p in self.seen:
            if n == name:
                return p
        raise KeyError(name)


class ExplodingComponent:
    name = "explode"

    async def parse(self, body: Any, options: Dict[str, Any]) -> ComponentResult:
        raise RuntimeError("parse blew up")

    async def convert(self, info: Dict[str, Any], options: Dict[str, Any]) -> ComponentResult:
        return ComponentResult()


class CountingComponent:
    """Pass-through component that records how often each stage ran."""

    name = "counting"

    def __init__(self) -> None:
        self.parsed = 0
        self.converted = 0

    async def parse(self, body: Any, options: Dict[str, Any]) -> ComponentResult:
        self.parsed += 1
        return ComponentResult(0, {"payload": body})

    async def convert(self, info: Dict[str, Any], options: Dict[str, Any]) -> ComponentResult:
        self.converted += 1
        body = b"ok"
        return ComponentResult(
            0, {"head": {"Content-Type": "text/plain", "Content-Length": str(len(body))}, "body": body}
        )
