from __future__ import annotations

import logging
from dataclasses import dataclass, field

from starlette.types import Receive, Scope, Send

from chart_render_service.bus import CorrelationBus
from chart_render_service.config import Settings
from chart_render_service.events import LifecycleEvents
from chart_render_service.pipeline import PendingCounter, RequestContext, RequestPipeline, simple_reply
from chart_render_service.registry import ComponentRegistry

logger = logging.getLogger(__name__)

PING_ROUTE = "ping"


@dataclass
class RenderService:
    """Everything a request needs, owned by one app instance."""

    settings: Settings
    registry: ComponentRegistry
    bus: CorrelationBus
    events: LifecycleEvents
    counter: PendingCounter = field(default_factory=PendingCounter)


class RenderFrontend:
    """
    ASGI endpoint for every path: `/ping`, `/<component-name>`, anything else -> 404.
    """

    def __init__(self, service: RenderService) -> None:
        self.service = service

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        route = str(scope.get("path") or "/")[1:]
        if route == PING_ROUTE:
            await simple_reply(send, 200)
            return

        svc = self.service
        context = RequestContext.create(route=route, port=svc.settings.port, receive=receive, send=send)
        pipeline = RequestPipeline(
            context,
            svc.registry.get(route),
            bus=svc.bus,
            counter=svc.counter,
            events=svc.events,
            options=svc.settings.render_options(),
            request_timeout=svc.settings.request_timeout,
            max_body_bytes=svc.settings.max_body_bytes,
        )
        logger.debug("request id=%s route=%s", context.id, route)
        await pipeline.run()
