"""
Render worker process.

Started by `ProcessRenderSurface`; reads JSON lines on stdin and writes one reply
line per render request on stdout. Diagnostics go to stderr.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import threading
from typing import Any, BinaryIO, Dict, FrozenSet, Iterable, Optional, Set

from chart_render_service.surface.renderers import render_message

logger = logging.getLogger("chart_render_service.worker")


class _Inbox:
    """Render queue, the ids queued or rendering, and which of those nobody wants any more."""

    def __init__(self) -> None:
        self.work: "queue.Queue[Optional[Dict[str, Any]]]" = queue.Queue()
        self._active: Set[str] = set()
        self._discarded: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def discarded(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._discarded)

    def put(self, message: Dict[str, Any]) -> None:
        with self._lock:
            self._active.add(str(message.get("id") or ""))
        self.work.put(message)

    def discard(self, request_id: str) -> None:
        # A discard for an id already answered (or never seen) has nothing left to cancel.
        with self._lock:
            if request_id in self._active:
                self._discarded.add(request_id)

    def is_discarded(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._discarded

    def finish(self, request_id: str) -> bool:
        """Forget `request_id`; True if it was discarded while in flight."""
        with self._lock:
            self._active.discard(request_id)
            if request_id in self._discarded:
                self._discarded.remove(request_id)
                return True
            return False


def _read_lines(lines: Iterable[bytes], inbox: _Inbox) -> None:
    for raw in lines:
        if not raw.strip():
            continue
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("ignoring malformed request line bytes=%s", len(raw))
            continue
        if not isinstance(message, dict):
            continue
        if message.get("type") == "discard":
            inbox.discard(str(message.get("id") or ""))
            continue
        inbox.put(message)
    inbox.work.put(None)


def _drain(inbox: _Inbox, stdout: BinaryIO) -> None:
    while True:
        message = inbox.work.get()
        if message is None:
            return
        request_id = str(message.get("id") or "")
        if inbox.is_discarded(request_id):
            inbox.finish(request_id)
            logger.debug("skipping discarded render id=%s", request_id)
            continue

        error_code, result = render_message(message)
        if inbox.finish(request_id):
            continue

        reply = {"id": request_id, "errorCode": error_code, "result": result}
        stdout.write(json.dumps(reply, ensure_ascii=False, separators=(",", ":")).encode("utf-8") + b"\n")
        stdout.flush()


def serve(stdin: BinaryIO, stdout: BinaryIO) -> int:
    inbox = _Inbox()
    reader = threading.Thread(target=_read_lines, args=(stdin, inbox), name="render-worker-stdin", daemon=True)
    reader.start()
    _drain(inbox, stdout)
    return 0


def main() -> int:
    logging.basicConfig(stream=sys.stderr, level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    return serve(sys.stdin.buffer, sys.stdout.buffer)


if __name__ == "__main__":
    raise SystemExit(main())
