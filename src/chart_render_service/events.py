from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

AFTER_CONNECT = "after-connect"
EXPORT_ERROR = "export-error"
AFTER_CONVERT = "after-convert"

Handler = Callable[[Dict[str, Any]], None]

# Ledger fields that carry image or figure payloads; logged as a size summary only.
_BULKY_KEYS = {"body", "imgData", "figure"}


class LifecycleEvents:
    """Process-level notifications consumed by logging/metrics collaborators."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def on(self, name: str, handler: Handler) -> None:
        self._handlers.setdefault(name, []).append(handler)

    def off(self, name: str, handler: Handler) -> None:
        handlers = self._handlers.get(name) or []
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, name: str, payload: Dict[str, Any]) -> None:
        for handler in list(self._handlers.get(name) or []):
            try:
                handler(payload)
            except Exception:  # noqa: BLE001 - an observer must not break the request
                logger.exception("lifecycle handler failed event=%s", name)


def _summarize(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if isinstance(value, str):
        return f"<{len(value)} chars>"
    if isinstance(value, dict):
        return f"<{len(value)} keys>"
    return "<omitted>"


def _loggable(payload: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in payload.items():
        out[k] = _summarize(v) if k in _BULKY_KEYS else v
    return out


def install_lifecycle_logging(events: LifecycleEvents, *, log: logging.Logger = logger) -> None:
    """Log every lifecycle event as a one-line JSON record."""

    def _handler_for(name: str) -> Handler:
        level = logging.WARNING if name == EXPORT_ERROR else logging.INFO

        def _log(payload: Dict[str, Any]) -> None:
            record = {"event": name, **_loggable(payload)}
            log.log(level, json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str))

        return _log

    for name in (AFTER_CONNECT, EXPORT_ERROR, AFTER_CONVERT):
        events.on(name, _handler_for(name))
