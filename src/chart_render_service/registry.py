"""
Render component contract and the name -> component registry.

New chart families are added by registering another component; the request
pipeline never branches on component names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol


@dataclass(frozen=True)
class ComponentResult:
    """Outcome of a parse or convert stage. `info` is merged into the request ledger."""

    error_code: int = 0
    info: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.error_code


class RenderComponent(Protocol):
    """Interface for one chart family."""

    name: str

    async def parse(self, body: Any, options: Dict[str, Any]) -> ComponentResult:
        """Validate the decoded request body; report bad input through `error_code`."""

    async def convert(self, info: Dict[str, Any], options: Dict[str, Any]) -> ComponentResult:
        """Turn the accumulated ledger into response `head` and `body`."""


class ComponentRegistry:
    """Read-only after startup; shared by every request."""

    def __init__(self) -> None:
        self._components: Dict[str, RenderComponent] = {}

    def register(self, component: RenderComponent) -> None:
        name = str(getattr(component, "name", "") or "").strip()
        if not name:
            raise ValueError("component must have a non-empty name")
        if name in self._components:
            raise ValueError(f"component already registered: {name}")
        self._components[name] = component

    def get(self, name: str) -> Optional[RenderComponent]:
        return self._components.get(name)

    def names(self) -> List[str]:
        return sorted(self._components)

    def __contains__(self, name: object) -> bool:
        return name in self._components

    def __iter__(self) -> Iterator[RenderComponent]:
        return iter(self._components.values())

    def __len__(self) -> int:
        return len(self._components)


def default_registry() -> ComponentRegistry:
    from chart_render_service.components.plotly_graph import PlotlyGraph

    registry = ComponentRegistry()
    registry.register(PlotlyGraph())
    return registry
