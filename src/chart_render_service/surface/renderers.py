from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Tuple

from chart_render_service.components import plotly_graph

logger = logging.getLogger(__name__)

RENDER_ERROR = 525

Renderer = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]

RENDERERS: Dict[str, Renderer] = {
    plotly_graph.NAME: plotly_graph.render,
}


def error_msg(exc: BaseException) -> str:
    return json.dumps(
        {"message": str(exc), "type": exc.__class__.__module__, "name": exc.__class__.__name__},
        ensure_ascii=False,
    )


def render_message(message: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
    """
    Run one `{topic, id, info, options}` render request.

    Returns `(error_code, result)`; engine failures never raise out of here.
    """
    topic = str(message.get("topic") or "")
    renderer = RENDERERS.get(topic)
    if renderer is None:
        return RENDER_ERROR, {"msg": f"no renderer for topic: {topic}"}

    info = message.get("info") if isinstance(message.get("info"), dict) else {}
    options = message.get("options") if isinstance(message.get("options"), dict) else {}
    try:
        return 0, renderer(info, options)
    except Exception as exc:  # noqa: BLE001 - reported to the caller as a render failure
        logger.warning("render failed id=%s topic=%s err=%r", message.get("id"), topic, exc)
        return RENDER_ERROR, {"msg": error_msg(exc)}
