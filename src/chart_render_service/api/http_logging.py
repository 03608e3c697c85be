from __future__ import annotations

import json
import logging
import time
from typing import Any, Iterable, List, Optional, Tuple

from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("chart_render_service.http")


def _content_type(headers: Optional[Iterable[Tuple[bytes, bytes]]]) -> str:
    if not headers:
        return ""
    for k, v in headers:
        if k.lower() == b"content-type":
            try:
                return v.decode("latin-1")
            except Exception:
                return ""
    return ""


class HttpLoggingMiddleware:
    """One JSON access-log line per request: method, path, status, sizes, duration."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        started_at = time.perf_counter()
        req_headers: List[Tuple[bytes, bytes]] = list(scope.get("headers") or [])
        req_bytes = 0
        res_status: Optional[int] = None
        res_ct = ""
        res_bytes = 0
        disconnected = False

        async def receive_wrapped() -> Message:
            nonlocal req_bytes, disconnected
            message = await receive()
            if message.get("type") == "http.request":
                req_bytes += len(message.get("body") or b"")
            elif message.get("type") == "http.disconnect":
                disconnected = True
            return message

        async def send_wrapped(message: Message) -> None:
            nonlocal res_status, res_ct, res_bytes
            if message.get("type") == "http.response.start":
                res_status = int(message.get("status") or 0)
                res_ct = _content_type(message.get("headers"))
            elif message.get("type") == "http.response.body":
                res_bytes += len(message.get("body") or b"")
            await send(message)

        err: Optional[BaseException] = None
        try:
            await self.app(scope, receive_wrapped, send_wrapped)
        except BaseException as e:  # noqa: BLE001 - we want to log then re-raise
            err = e
            raise
        finally:
            record: dict[str, Any] = {
                "method": str(scope.get("method") or "").upper(),
                "path": str(scope.get("path") or ""),
                "status": res_status,
                "dur_ms": int((time.perf_counter() - started_at) * 1000),
                "request": {"content_type": _content_type(req_headers), "bytes": req_bytes},
                "response": {"content_type": res_ct, "bytes": res_bytes},
                "client_disconnected": disconnected,
            }
            if err is not None:
                record["error"] = {"type": type(err).__name__, "message": str(err)}
            logger.info(json.dumps(record, ensure_ascii=False, separators=(",", ":")))


def install_http_logging(app: Any, *, enabled: bool) -> None:
    """Enable access logging (`CHART_RENDER_HTTP_LOG=1`)."""
    if not enabled:
        return
    app.add_middleware(HttpLoggingMiddleware)
