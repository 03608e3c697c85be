"""
Per-request orchestration.

- Request state + ledger: `context.py`
- In-flight counter: `counter.py`
- State machine: `pipeline.py`
"""

from chart_render_service.pipeline.context import PipelineState, RequestContext
from chart_render_service.pipeline.counter import PendingCounter
from chart_render_service.pipeline.pipeline import RequestPipeline, simple_reply

__all__ = ["PendingCounter", "PipelineState", "RequestContext", "RequestPipeline", "simple_reply"]
