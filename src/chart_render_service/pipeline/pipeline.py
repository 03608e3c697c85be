from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import anyio
from anyio.abc import TaskGroup
from starlette.types import Send

from chart_render_service.bus import CorrelationBus
from chart_render_service.events import AFTER_CONVERT, EXPORT_ERROR, LifecycleEvents
from chart_render_service.pipeline.context import PipelineState, RequestContext
from chart_render_service.pipeline.counter import PendingCounter
from chart_render_service.registry import RenderComponent
from chart_render_service.status import status_message

logger = logging.getLogger(__name__)


class RequestAborted(Exception):
    def __init__(self, code: int, msg: str = "") -> None:
        super().__init__(msg or status_message(code))
        self.code = code
        self.msg = msg


def _encode_headers(head: Dict[str, Any]) -> List[Tuple[bytes, bytes]]:
    return [(str(k).lower().encode("latin-1"), str(v).encode("latin-1")) for k, v in (head or {}).items()]


async def simple_reply(send: Send, code: int, msg: Optional[str] = None) -> None:
    body = (msg if msg is not None else status_message(code)).encode("utf-8")
    await send(
        {
            "type": "http.response.start",
            "status": code,
            "headers": _encode_headers({"Content-Type": "text/plain; charset=utf-8", "Content-Length": len(body)}),
        }
    )
    await send({"type": "http.response.body", "body": body, "more_body": False})


class RequestPipeline:
    """
    One request's walk through RECEIVING -> PARSING -> AWAITING_RENDER -> CONVERTING -> REPLIED.

    Out-of-band signals (transport error, client disconnect, idle timeout) cancel the
    running stage; whichever path reaches REPLIED first wins and every later attempt
    to reply is ignored.
    """

    def __init__(
        self,
        context: RequestContext,
        component: Optional[RenderComponent],
        *,
        bus: CorrelationBus,
        counter: PendingCounter,
        events: LifecycleEvents,
        options: Dict[str, Any],
        request_timeout: float,
        max_body_bytes: int,
    ) -> None:
        self.context = context
        self.state = PipelineState.RECEIVING
        self._component = component
        self._bus = bus
        self._counter = counter
        self._events = events
        self._options = options
        self._request_timeout = request_timeout
        self._max_body_bytes = max_body_bytes
        self._scope: Optional[anyio.CancelScope] = None
        self._abort_code: Optional[int] = None
        self._counted = False
        self._notified = False

    async def run(self) -> None:
        if self._component is None:
            await self._error_reply(404)
            return

        async with anyio.create_task_group() as tg:
            with anyio.CancelScope() as scope:
                self._scope = scope
                self._touch()
                await self._process(tg)
            tg.cancel_scope.cancel()

        if scope.cancelled_caught:
            await self._interrupted()

    def abort(self, code: int) -> None:
        """Terminate from outside the pipeline (disconnect, transport error)."""
        if self.state is PipelineState.REPLIED or self._abort_code is not None:
            return
        self._abort_code = code
        if self._scope is not None:
            self._scope.cancel()

    def _touch(self) -> None:
        if self._scope is not None:
            self._scope.deadline = anyio.current_time() + self._request_timeout

    async def _process(self, tg: TaskGroup) -> None:
        try:
            body = await self._read_body()
        except RequestAborted as exc:
            await self._error_reply(exc.code, exc.msg)
            return

        tg.start_soon(self._watch_transport)
        try:
            await self._drive(body)
        except Exception:  # noqa: BLE001 - pipeline boundary: every failure becomes a reply
            logger.exception(
                "pipeline failed id=%s route=%s state=%s", self.context.id, self.context.route, self.state.value
            )
            await self._error_reply(500)

    async def _read_body(self) -> Any:
        chunks: List[bytes] = []
        size = 0
        while True:
            try:
                message = await self.context.receive()
            except Exception as exc:  # noqa: BLE001
                logger.warning("request read failed id=%s err=%r", self.context.id, exc)
                raise RequestAborted(401) from exc

            kind = message.get("type")
            if kind == "http.disconnect":
                raise RequestAborted(499)
            if kind != "http.request":
                continue

            chunk = message.get("body") or b""
            size += len(chunk)
            if size > self._max_body_bytes:
                raise RequestAborted(422, f"request body exceeds {self._max_body_bytes} bytes")
            chunks.append(chunk)
            self._touch()
            if not message.get("more_body", False):
                break

        try:
            return json.loads(b"".join(chunks))
        except ValueError as exc:
            raise RequestAborted(422) from exc

    async def _drive(self, body: Any) -> None:
        assert self._component is not None
        ctx = self.context

        self.state = PipelineState.PARSING
        self._counter.increment()
        self._counted = True
        parsed = await self._component.parse(body, self._options)
        ctx.merge(parsed.info)
        if parsed.error_code:
            await self._error_reply(parsed.error_code)
            return

        self.state = PipelineState.AWAITING_RENDER
        rendered = await self._bus.request(self._component.name, ctx.id, ctx.full_info, self._options)
        ctx.merge(rendered.result)
        if rendered.error_code:
            await self._error_reply(rendered.error_code)
            return

        self.state = PipelineState.CONVERTING
        converted = await self._component.convert(ctx.full_info, self._options)
        ctx.merge(converted.info)
        if converted.error_code:
            await self._error_reply(converted.error_code)
            return

        await self._reply_success()

    async def _watch_transport(self) -> None:
        while True:
            try:
                message = await self.context.receive()
            except Exception as exc:  # noqa: BLE001
                logger.warning("transport error id=%s err=%r", self.context.id, exc)
                self.abort(401)
                return
            if message.get("type") == "http.disconnect":
                self.abort(499)
                return

    def _settle(self) -> int:
        info = self.context.full_info
        if self._counted:
            self._counted = False
            info["pending"] = self._counter.decrement()
        else:
            info["pending"] = self._counter.value
        info["processingTime"] = self.context.timer.end()
        return info["pending"]

    def _notify(self, event: str, payload: Dict[str, Any]) -> None:
        if self._notified:
            return
        self._notified = True
        self._events.emit(event, payload)

    async def _reply_success(self) -> None:
        info = self.context.full_info
        self.state = PipelineState.REPLIED
        self._settle()
        self._touch()

        body = info.get("body") or b""
        if isinstance(body, str):
            body = body.encode("utf-8")
        send = self.context.send
        try:
            await send({"type": "http.response.start", "status": 200, "headers": _encode_headers(info.get("head") or {})})
            await send({"type": "http.response.body", "body": body, "more_body": True})
            # Returns once the transport has accepted (drained) the final frame.
            await send({"type": "http.response.body", "body": b"", "more_body": False})
        except OSError as exc:
            logger.warning("response write failed id=%s err=%r", self.context.id, exc)
            info["msg"] = status_message(401)
            self._notify(EXPORT_ERROR, {"code": 401, **info})
            return

        self._notify(AFTER_CONVERT, info)

    async def _error_reply(self, code: int, msg: str = "") -> None:
        if self.state is PipelineState.REPLIED:
            return
        self.state = PipelineState.REPLIED
        info = self.context.full_info
        info["msg"] = msg or info.get("msg") or status_message(code)
        self._settle()
        self._notify(EXPORT_ERROR, {"code": code, **info})
        try:
            await simple_reply(self.context.send, code, info["msg"])
        except OSError as exc:
            logger.debug("error reply not delivered id=%s code=%s err=%r", self.context.id, code, exc)

    async def _interrupted(self) -> None:
        code = self._abort_code or 522
        if self.state is PipelineState.REPLIED:
            if self._notified:
                return
            # The success reply was already committed; it cannot be replaced on the wire.
            info = self.context.full_info
            info["msg"] = status_message(code)
            self._notify(EXPORT_ERROR, {"code": code, **info})
            return
        await self._error_reply(code)
