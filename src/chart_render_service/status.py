from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class StatusEntry:
    code: int
    message: str


STATUS_MSG: Dict[int, str] = {
    200: "pong",
    400: "invalid or malformed request syntax",
    401: "error during request",
    404: "invalid route",
    406: "requested format is not acceptable",
    422: "json parse error",
    499: "client closed request before generation complete",
    500: "internal server error",
    522: "client socket timeout",
    525: "rendering error",
    530: "image conversion error",
}


def status_entry(code: int) -> StatusEntry:
    """
    Look up the reply for an outcome code.

    Codes outside the table are passed through verbatim with an empty message;
    the caller is expected to supply one.
    """
    return StatusEntry(code=int(code), message=STATUS_MSG.get(int(code), ""))


def status_message(code: int) -> str:
    return status_entry(code).message
