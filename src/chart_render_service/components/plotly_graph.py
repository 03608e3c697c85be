from __future__ import annotations

import base64
import binascii
import io
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from chart_render_service.registry import ComponentResult

NAME = "plotly-graph"

DPI = 100
DEFAULT_WIDTH = 700
DEFAULT_HEIGHT = 500

CONTENT_TYPES: Dict[str, str] = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
}
_FORMAT_ALIASES = {"jpg": "jpeg"}
TRACE_TYPES = {"scatter", "bar", "pie"}


def normalize_format(value: Any) -> Optional[str]:
    t = str(value or "").strip().lower()
    t = _FORMAT_ALIASES.get(t, t)
    return t if t in CONTENT_TYPES else None


class Trace(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field(default="scatter")
    name: Optional[str] = Field(default=None)
    mode: Optional[str] = Field(default=None)
    x: Optional[List[Any]] = Field(default=None)
    y: Optional[List[Any]] = Field(default=None)
    labels: Optional[List[Any]] = Field(default=None)
    values: Optional[List[float]] = Field(default=None)

    @field_validator("type")
    @classmethod
    def _validate_type(cls, v: str) -> str:
        t = str(v or "").strip().lower()
        if t in TRACE_TYPES:
            return t
        raise ValueError(f"trace type must be one of: {' | '.join(sorted(TRACE_TYPES))}")

    @model_validator(mode="after")
    def _require_data(self) -> "Trace":
        if self.type == "pie":
            if not self.values:
                raise ValueError("pie trace requires `values`")
        elif not self.y:
            raise ValueError(f"{self.type} trace requires `y`")
        return self


class Figure(BaseModel):
    model_config = ConfigDict(extra="allow")

    data: List[Trace] = Field(default_factory=list)
    layout: Dict[str, Any] = Field(default_factory=dict)


class PlotlyGraphRequest(BaseModel):
    """
    `POST /plotly-graph` body.

    `figure` (or `fig` / `spec`) is a plotly-style `{data, layout}` object.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    figure: Figure = Field(..., validation_alias=AliasChoices("figure", "fig", "spec"))
    format: str = Field(default="png")
    width: Optional[int] = Field(default=None, ge=1, le=10_000)
    height: Optional[int] = Field(default=None, ge=1, le=10_000)
    scale: float = Field(default=1.0, gt=0, le=10)


def _summarize_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        loc = ".".join(str(p) for p in err.get("loc") or ())
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


class PlotlyGraph:
    name = NAME

    async def parse(self, body: Any, options: Dict[str, Any]) -> ComponentResult:
        if not isinstance(body, dict):
            return ComponentResult(400, {"msg": "request body must be a JSON object"})
        try:
            req = PlotlyGraphRequest.model_validate(body)
        except ValidationError as exc:
            return ComponentResult(400, {"msg": f"invalid figure: {_summarize_errors(exc)}"})

        fmt = normalize_format(req.format)
        if fmt is None:
            return ComponentResult(
                406, {"msg": f"format must be one of: {' | '.join(sorted(CONTENT_TYPES))}", "format": req.format}
            )

        layout = req.figure.layout
        return ComponentResult(
            0,
            {
                "figure": req.figure.model_dump(exclude_none=True),
                "format": fmt,
                "width": req.width or _as_int(layout.get("width"), DEFAULT_WIDTH),
                "height": req.height or _as_int(layout.get("height"), DEFAULT_HEIGHT),
                "scale": req.scale,
            },
        )

    async def convert(self, info: Dict[str, Any], options: Dict[str, Any]) -> ComponentResult:
        img = info.get("imgData")
        if not isinstance(img, str) or not img:
            return ComponentResult(530, {"msg": "render produced no image data"})
        try:
            body = base64.b64decode(img, validate=True)
        except (binascii.Error, ValueError):
            return ComponentResult(530, {"msg": "render produced undecodable image data"})

        fmt = normalize_format(info.get("format")) or "png"
        return ComponentResult(
            0,
            {
                "head": {"Content-Type": CONTENT_TYPES[fmt], "Content-Length": str(len(body))},
                "body": body,
            },
        )


def _as_int(value: Any, default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def _text(value: Any) -> str:
    # plotly allows `title: "..."` or `title: {text: "..."}`
    if isinstance(value, dict):
        value = value.get("text")
    return str(value or "")


def render(info: Dict[str, Any], options: Dict[str, Any]) -> Dict[str, Any]:
    """Paint the figure with matplotlib and return `{imgData: <base64>}`."""
    from matplotlib.figure import Figure as MplFigure

    figure = info.get("figure") or {}
    layout = figure.get("layout") or {}
    fmt = normalize_format(info.get("format")) or "png"
    width = _as_int(info.get("width"), DEFAULT_WIDTH)
    height = _as_int(info.get("height"), DEFAULT_HEIGHT)
    scale = float(info.get("scale") or 1.0)

    canvas = MplFigure(figsize=(width / DPI, height / DPI), dpi=DPI)
    ax = canvas.add_subplot()

    named = 0
    for trace in figure.get("data") or []:
        kind = str(trace.get("type") or "scatter").lower()
        name = trace.get("name")
        named += 1 if name else 0
        if kind == "pie":
            ax.pie(trace.get("values") or [], labels=trace.get("labels"))
            ax.set_aspect("equal")
            continue

        y = trace.get("y") or []
        x = trace.get("x") or list(range(len(y)))
        if kind == "bar":
            ax.bar(x, y, label=name)
        elif kind == "scatter":
            mode = str(trace.get("mode") or "lines+markers")
            ax.plot(
                x,
                y,
                linestyle="-" if "lines" in mode else "None",
                marker="o" if "markers" in mode else None,
                label=name,
            )
        else:
            raise ValueError(f"unsupported trace type: {kind}")

    ax.set_title(_text(layout.get("title")))
    ax.set_xlabel(_text((layout.get("xaxis") or {}).get("title")))
    ax.set_ylabel(_text((layout.get("yaxis") or {}).get("title")))
    if layout.get("showlegend", named > 1) and named:
        ax.legend()

    buf = io.BytesIO()
    canvas.savefig(buf, format=fmt, dpi=DPI * scale)
    return {"imgData": base64.b64encode(buf.getvalue()).decode("ascii")}
