from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
import logging
from typing import Any, TypeAlias

import numpy as np

from grammarplot.aesthetics import AesMap, Aesthetic, Constant
from grammarplot.data import Column, ColumnKind, DataStore
from grammarplot.errors import InvalidConfiguration
from grammarplot.grouping import group_ranks
from grammarplot.positions import DODGE_HI, DODGE_LO, Dodge, IdentityPosition, Position, Stack
from grammarplot.scales import CategoricalScale, ContinuousScale, ScaleSet, resolution
from grammarplot.settings import BuildSettings
from grammarplot.stats import Bin, Boxplot, Count, Density, Identity, Smooth, Stat, StatOutput
from grammarplot.visuals import RGBA, Shape, dash_pattern, parse_color, parse_shape, with_alpha


LOGGER = logging.getLogger(__name__)


class GeomKind(str, Enum):
    POINT = "point"
    LINE = "line"
    PATH = "path"
    BAR = "bar"
    COL = "col"
    HISTOGRAM = "histogram"
    AREA = "area"
    DENSITY = "density"
    SMOOTH = "smooth"
    BOXPLOT = "boxplot"
    ERRORBAR = "errorbar"
    SEGMENT = "segment"
    RECT = "rect"
    TEXT = "text"
    HLINE = "hline"
    VLINE = "vline"


# Aesthetics each geometry needs before its stat runs.
REQUIRED: dict[GeomKind, tuple[Aesthetic, ...]] = {
    GeomKind.POINT: (Aesthetic.X, Aesthetic.Y),
    GeomKind.LINE: (Aesthetic.X, Aesthetic.Y),
    GeomKind.PATH: (Aesthetic.X, Aesthetic.Y),
    GeomKind.BAR: (Aesthetic.X,),
    GeomKind.COL: (Aesthetic.X, Aesthetic.Y),
    GeomKind.HISTOGRAM: (Aesthetic.X,),
    GeomKind.AREA: (Aesthetic.X, Aesthetic.Y),
    GeomKind.DENSITY: (Aesthetic.X,),
    GeomKind.SMOOTH: (Aesthetic.X, Aesthetic.Y),
    GeomKind.BOXPLOT: (Aesthetic.Y,),
    GeomKind.ERRORBAR: (Aesthetic.X, Aesthetic.YMIN, Aesthetic.YMAX),
    GeomKind.SEGMENT: (Aesthetic.XBEGIN, Aesthetic.YBEGIN, Aesthetic.XEND, Aesthetic.YEND),
    GeomKind.RECT: (Aesthetic.XMIN, Aesthetic.XMAX, Aesthetic.YMIN, Aesthetic.YMAX),
    GeomKind.TEXT: (Aesthetic.X, Aesthetic.Y, Aesthetic.LABEL),
    GeomKind.HLINE: (Aesthetic.YINTERCEPT,),
    GeomKind.VLINE: (Aesthetic.XINTERCEPT,),
}

_RECT_LIKE = {GeomKind.BAR, GeomKind.COL, GeomKind.HISTOGRAM}
_AREA_LIKE = {GeomKind.AREA, GeomKind.DENSITY}


def default_stat(kind: GeomKind, settings: BuildSettings) -> Stat:
    if kind is GeomKind.BAR:
        return Count()
    if kind is GeomKind.HISTOGRAM:
        return Bin()
    if kind is GeomKind.BOXPLOT:
        return Boxplot()
    if kind is GeomKind.DENSITY:
        return Density(n=settings.density_points)
    if kind is GeomKind.SMOOTH:
        return Smooth(n=settings.smooth_points)
    return Identity()


def default_position(kind: GeomKind, settings: BuildSettings) -> Position:
    if kind in {GeomKind.BAR, GeomKind.HISTOGRAM}:
        return Stack()
    if kind is GeomKind.BOXPLOT:
        return Dodge(width=settings.bar_width)
    return IdentityPosition()


def check_required(kind: GeomKind, mapping: AesMap) -> None:
    missing = [a.value for a in REQUIRED[kind] if a not in mapping]
    if missing:
        raise InvalidConfiguration(f"geom `{kind.value}` requires aesthetics: {', '.join(missing)}")


def setup_data(kind: GeomKind, out: StatOutput) -> StatOutput:
    """Give rect and area geometries an explicit baseline before position adjustment."""
    if kind not in _RECT_LIKE and kind not in _AREA_LIKE:
        return out
    data, mapping = out.data, out.mapping
    if Aesthetic.YMIN in mapping and Aesthetic.YMAX in mapping:
        return out
    y = mapping.resolve(Aesthetic.Y, data)
    if y is None:
        raise InvalidConfiguration(f"geom `{kind.value}` requires `y` after its stat")
    values = y.as_float(Aesthetic.Y)
    data = data.with_columns(
        [
            Column.from_values("ymin", np.zeros(data.nrows), ColumnKind.FLOAT),
            Column.from_values("ymax", values, ColumnKind.FLOAT),
        ]
    )
    return replace(out, data=data, mapping=mapping.updated({Aesthetic.YMIN: "ymin", Aesthetic.YMAX: "ymax"}))


Point2 = tuple[float, float]


@dataclass(frozen=True)
class PointPrimitive:
    x: float
    y: float
    color: RGBA
    size: float
    shape: Shape


@dataclass(frozen=True)
class PolylinePrimitive:
    points: tuple[Point2, ...]
    color: RGBA
    width: float
    dash: tuple[float, ...] = ()


@dataclass(frozen=True)
class PolygonPrimitive:
    points: tuple[Point2, ...]
    fill: RGBA
    color: RGBA | None = None


@dataclass(frozen=True)
class RectPrimitive:
    x0: float
    y0: float
    x1: float
    y1: float
    fill: RGBA
    color: RGBA | None = None


@dataclass(frozen=True)
class SegmentPrimitive:
    x0: float
    y0: float
    x1: float
    y1: float
    color: RGBA
    width: float
    dash: tuple[float, ...] = ()


@dataclass(frozen=True)
class TextPrimitive:
    x: float
    y: float
    text: str
    color: RGBA
    size: float


Primitive: TypeAlias = (
    PointPrimitive | PolylinePrimitive | PolygonPrimitive | RectPrimitive | SegmentPrimitive | TextPrimitive
)


class _Frame:
    """Per-layer lookup of normalized positions and literal visuals."""

    def __init__(self, data: DataStore, mapping: AesMap, scales: ScaleSet, settings: BuildSettings) -> None:
        self.data = data
        self.mapping = mapping
        self.scales = scales
        self.settings = settings
        self._positions: dict[Aesthetic, np.ndarray | None] = {}

    @property
    def nrows(self) -> int:
        return self.data.nrows

    def pos(self, aesthetic: Aesthetic) -> np.ndarray | None:
        if aesthetic not in self._positions:
            self._positions[aesthetic] = self._map_positions(aesthetic)
        return self._positions[aesthetic]

    def _map_positions(self, aesthetic: Aesthetic) -> np.ndarray | None:
        column = self.mapping.resolve(aesthetic, self.data)
        if column is None:
            return None
        scale = self.scales.get(aesthetic.family)
        if scale is None:
            return None
        if isinstance(scale, ContinuousScale):
            return scale.map_array(column.as_float(aesthetic))
        mapped = np.asarray([scale.map_category(v) for v in column.values.tolist()], dtype=np.float64)
        if aesthetic is Aesthetic.X and DODGE_LO in self.data:
            # dodged rows sit at the center of their slot
            mid = (self.data.column(DODGE_LO).values + self.data.column(DODGE_HI).values) / 2.0
            mapped = mapped + mid * scale.slot_width
        return mapped

    def x_extent(self, width: float) -> tuple[np.ndarray, np.ndarray]:
        """Left and right edge of each row's box in normalized space."""
        x_scale = self.scales.get(Aesthetic.X)
        if isinstance(x_scale, CategoricalScale):
            center = self.pos(Aesthetic.X)
            assert center is not None
            sw = x_scale.slot_width
            if DODGE_LO in self.data:
                half = (self.data.column(DODGE_HI).values - self.data.column(DODGE_LO).values) * sw / 2.0
                return center - half, center + half
            return center - width * sw / 2.0, center + width * sw / 2.0

        lo, hi = self.pos(Aesthetic.XMIN), self.pos(Aesthetic.XMAX)
        if lo is not None and hi is not None:
            return lo, hi
        x = self.mapping.resolve(Aesthetic.X, self.data)
        assert x is not None and isinstance(x_scale, ContinuousScale)
        xs = x.as_float(Aesthetic.X)
        half = width * resolution(xs) / 2.0
        return x_scale.map_array(xs - half), x_scale.map_array(xs + half)

    def _raw(self, aesthetic: Aesthetic, i: int) -> tuple[bool, Any]:
        value = self.mapping.get(aesthetic)
        if value is None:
            return False, None
        if isinstance(value, Constant):
            return False, value.value
        column = self.mapping.resolve(aesthetic, self.data)
        assert column is not None
        return True, column.values[i]

    def _scaled(self, aesthetic: Aesthetic, i: int, default: Any) -> tuple[bool, Any]:
        scaled, raw = self._raw(aesthetic, i)
        if not scaled:
            return False, default if raw is None else raw
        scale = self.scales.get(aesthetic)
        if scale is None:
            return False, default
        out = scale.map_value(raw)
        return True, default if out is None else out

    def alpha(self, i: int) -> float:
        _, value = self._scaled(Aesthetic.ALPHA, i, self.settings.alpha)
        return float(value)

    def color(self, i: int, *, alpha: bool = True) -> RGBA:
        _, value = self._scaled(Aesthetic.COLOR, i, self.settings.color)
        color = parse_color(value)
        return with_alpha(color, self.alpha(i) * color[3] / 255.0) if alpha else color

    def fill(self, i: int) -> RGBA:
        _, value = self._scaled(Aesthetic.FILL, i, self.settings.fill)
        color = parse_color(value)
        return with_alpha(color, self.alpha(i) * color[3] / 255.0)

    def size(self, i: int, default: float) -> float:
        _, value = self._scaled(Aesthetic.SIZE, i, default)
        return float(value)

    def shape(self, i: int) -> Shape:
        _, value = self._scaled(Aesthetic.SHAPE, i, self.settings.point_shape)
        return parse_shape(value)

    def dash(self, i: int) -> tuple[float, ...]:
        _, value = self._scaled(Aesthetic.LINETYPE, i, self.settings.linetype)
        return dash_pattern(value)

    def label(self, i: int) -> str:
        _, value = self._raw(Aesthetic.LABEL, i)
        return "" if value is None else str(value)

    def groups(self) -> list[np.ndarray]:
        ranks = group_ranks(self.data)
        return [np.flatnonzero(ranks == r) for r in np.unique(ranks)]


def _finite(*values: Any) -> bool:
    return all(v is not None and np.isfinite(v) for v in values)


def emit(
    kind: GeomKind,
    data: DataStore,
    mapping: AesMap,
    scales: ScaleSet,
    settings: BuildSettings,
    *,
    outliers: DataStore | None = None,
) -> list[Primitive]:
    """Turn positioned layer data into primitives in normalized plot space."""
    frame = _Frame(data, mapping, scales, settings)
    emitter = _EMITTERS[kind]
    primitives = emitter(frame)
    if kind is GeomKind.BOXPLOT and outliers is not None and outliers.nrows:
        primitives.extend(_points(_Frame(outliers, _outlier_mapping(mapping, outliers), scales, settings)))
    LOGGER.debug("geom %s emitted %d primitive(s) from %d rows", kind.value, len(primitives), data.nrows)
    return primitives


def _outlier_mapping(mapping: AesMap, outliers: DataStore) -> AesMap:
    keep = {
        a: v
        for a, v in mapping.items()
        if not a.is_positional and (isinstance(v, Constant) or mapping.column_name(a) in outliers)
    }
    return AesMap(keep).updated({Aesthetic.X: "x", Aesthetic.Y: "y"})


def _dropped(kind: str, n: int) -> None:
    if n:
        LOGGER.debug("%s: dropped %d row(s) outside the scale domain", kind, n)


def _points(frame: _Frame) -> list[Primitive]:
    xs, ys = frame.pos(Aesthetic.X), frame.pos(Aesthetic.Y)
    assert xs is not None and ys is not None
    out: list[Primitive] = []
    for i in range(frame.nrows):
        if not _finite(xs[i], ys[i]):
            continue
        out.append(
            PointPrimitive(
                x=float(xs[i]),
                y=float(ys[i]),
                color=frame.color(i),
                size=frame.size(i, frame.settings.point_size),
                shape=frame.shape(i),
            )
        )
    _dropped("point", frame.nrows - len(out))
    return out


def _text(frame: _Frame) -> list[Primitive]:
    xs, ys = frame.pos(Aesthetic.X), frame.pos(Aesthetic.Y)
    assert xs is not None and ys is not None
    out: list[Primitive] = []
    for i in range(frame.nrows):
        if not _finite(xs[i], ys[i]):
            continue
        out.append(
            TextPrimitive(
                x=float(xs[i]),
                y=float(ys[i]),
                text=frame.label(i),
                color=frame.color(i),
                size=frame.size(i, frame.settings.text_size),
            )
        )
    _dropped("text", frame.nrows - len(out))
    return out


def _polylines(frame: _Frame, *, sort_x: bool, y_aes: Aesthetic = Aesthetic.Y) -> list[Primitive]:
    xs, ys = frame.pos(Aesthetic.X), frame.pos(y_aes)
    assert xs is not None and ys is not None
    out: list[Primitive] = []
    for idx in frame.groups():
        if sort_x:
            idx = idx[np.argsort(xs[idx], kind="stable")]
        pts = tuple((float(xs[i]), float(ys[i])) for i in idx if _finite(xs[i], ys[i]))
        if len(pts) < 2:
            continue
        first = int(idx[0])
        out.append(
            PolylinePrimitive(
                points=pts,
                color=frame.color(first),
                width=frame.size(first, frame.settings.line_width),
                dash=frame.dash(first),
            )
        )
    return out


def _line(frame: _Frame) -> list[Primitive]:
    return _polylines(frame, sort_x=True)


def _path(frame: _Frame) -> list[Primitive]:
    return _polylines(frame, sort_x=False)


def _rects(frame: _Frame) -> list[Primitive]:
    x0, x1 = frame.x_extent(frame.settings.bar_width)
    y0, y1 = frame.pos(Aesthetic.YMIN), frame.pos(Aesthetic.YMAX)
    assert y0 is not None and y1 is not None
    out: list[Primitive] = []
    for i in range(frame.nrows):
        if not _finite(x0[i], x1[i], y0[i], y1[i]):
            continue
        color = frame.color(i) if Aesthetic.COLOR in frame.mapping else None
        out.append(
            RectPrimitive(
                x0=float(x0[i]), y0=float(y0[i]), x1=float(x1[i]), y1=float(y1[i]), fill=frame.fill(i), color=color
            )
        )
    _dropped("rect", frame.nrows - len(out))
    return out


def _rect(frame: _Frame) -> list[Primitive]:
    x0, x1 = frame.pos(Aesthetic.XMIN), frame.pos(Aesthetic.XMAX)
    y0, y1 = frame.pos(Aesthetic.YMIN), frame.pos(Aesthetic.YMAX)
    assert x0 is not None and x1 is not None and y0 is not None and y1 is not None
    out: list[Primitive] = []
    for i in range(frame.nrows):
        if not _finite(x0[i], x1[i], y0[i], y1[i]):
            continue
        color = frame.color(i) if Aesthetic.COLOR in frame.mapping else None
        out.append(
            RectPrimitive(
                x0=float(x0[i]), y0=float(y0[i]), x1=float(x1[i]), y1=float(y1[i]), fill=frame.fill(i), color=color
            )
        )
    _dropped("rect", frame.nrows - len(out))
    return out


def _areas(frame: _Frame) -> list[Primitive]:
    xs = frame.pos(Aesthetic.X)
    lo, hi = frame.pos(Aesthetic.YMIN), frame.pos(Aesthetic.YMAX)
    assert xs is not None and lo is not None and hi is not None
    out: list[Primitive] = []
    for idx in frame.groups():
        idx = idx[np.argsort(xs[idx], kind="stable")]
        idx = np.asarray([i for i in idx if _finite(xs[i], lo[i], hi[i])], dtype=np.int64)
        if idx.size < 2:
            continue
        upper = [(float(xs[i]), float(hi[i])) for i in idx]
        lower = [(float(xs[i]), float(lo[i])) for i in idx[::-1]]
        first = int(idx[0])
        color = frame.color(first) if Aesthetic.COLOR in frame.mapping else None
        out.append(PolygonPrimitive(points=tuple(upper + lower), fill=frame.fill(first), color=color))
    return out


def _smooth(frame: _Frame) -> list[Primitive]:
    out: list[Primitive] = []
    if Aesthetic.YMIN in frame.mapping and Aesthetic.YMAX in frame.mapping:
        for band in _areas(frame):
            assert isinstance(band, PolygonPrimitive)
            out.append(PolygonPrimitive(points=band.points, fill=with_alpha(band.fill, 0.4 * band.fill[3] / 255.0)))
    out.extend(_polylines(frame, sort_x=True))
    return out


def _boxplot(frame: _Frame) -> list[Primitive]:
    x0, x1 = frame.x_extent(frame.settings.bar_width)
    ymin, lower = frame.pos(Aesthetic.YMIN), frame.pos(Aesthetic.LOWER)
    middle, upper, ymax = frame.pos(Aesthetic.MIDDLE), frame.pos(Aesthetic.UPPER), frame.pos(Aesthetic.YMAX)
    assert ymin is not None and lower is not None and middle is not None and upper is not None and ymax is not None
    out: list[Primitive] = []
    width = frame.settings.line_width
    for i in range(frame.nrows):
        if not _finite(x0[i], x1[i], ymin[i], lower[i], middle[i], upper[i], ymax[i]):
            continue
        cx = float(x0[i] + x1[i]) / 2.0
        color = frame.color(i)
        out.append(RectPrimitive(float(x0[i]), float(lower[i]), float(x1[i]), float(upper[i]), frame.fill(i), color))
        out.append(SegmentPrimitive(float(x0[i]), float(middle[i]), float(x1[i]), float(middle[i]), color, width * 2.0))
        out.append(SegmentPrimitive(cx, float(upper[i]), cx, float(ymax[i]), color, width))
        out.append(SegmentPrimitive(cx, float(lower[i]), cx, float(ymin[i]), color, width))
    return out


def _errorbar(frame: _Frame) -> list[Primitive]:
    x0, x1 = frame.x_extent(frame.settings.bar_width / 2.0)
    y0, y1 = frame.pos(Aesthetic.YMIN), frame.pos(Aesthetic.YMAX)
    assert y0 is not None and y1 is not None
    out: list[Primitive] = []
    for i in range(frame.nrows):
        if not _finite(x0[i], x1[i], y0[i], y1[i]):
            continue
        cx = float(x0[i] + x1[i]) / 2.0
        color, width, dash = frame.color(i), frame.size(i, frame.settings.line_width), frame.dash(i)
        out.append(SegmentPrimitive(cx, float(y0[i]), cx, float(y1[i]), color, width, dash))
        out.append(SegmentPrimitive(float(x0[i]), float(y0[i]), float(x1[i]), float(y0[i]), color, width, dash))
        out.append(SegmentPrimitive(float(x0[i]), float(y1[i]), float(x1[i]), float(y1[i]), color, width, dash))
    return out


def _segment(frame: _Frame) -> list[Primitive]:
    xb, yb = frame.pos(Aesthetic.XBEGIN), frame.pos(Aesthetic.YBEGIN)
    xe, ye = frame.pos(Aesthetic.XEND), frame.pos(Aesthetic.YEND)
    assert xb is not None and yb is not None and xe is not None and ye is not None
    out: list[Primitive] = []
    for i in range(frame.nrows):
        if not _finite(xb[i], yb[i], xe[i], ye[i]):
            continue
        out.append(
            SegmentPrimitive(
                float(xb[i]),
                float(yb[i]),
                float(xe[i]),
                float(ye[i]),
                frame.color(i),
                frame.size(i, frame.settings.line_width),
                frame.dash(i),
            )
        )
    _dropped("segment", frame.nrows - len(out))
    return out


def _reference_lines(frame: _Frame, aesthetic: Aesthetic) -> list[Primitive]:
    values = frame.pos(aesthetic)
    assert values is not None
    out: list[Primitive] = []
    seen: set[float] = set()
    for i in range(frame.nrows):
        v = values[i]
        if not _finite(v) or float(v) in seen:
            continue
        v = float(v)
        seen.add(v)
        ends = (0.0, v, 1.0, v) if aesthetic is Aesthetic.YINTERCEPT else (v, 0.0, v, 1.0)
        out.append(SegmentPrimitive(*ends, frame.color(i), frame.size(i, frame.settings.line_width), frame.dash(i)))
    return out


def _hline(frame: _Frame) -> list[Primitive]:
    return _reference_lines(frame, Aesthetic.YINTERCEPT)


def _vline(frame: _Frame) -> list[Primitive]:
    return _reference_lines(frame, Aesthetic.XINTERCEPT)


_EMITTERS = {
    GeomKind.POINT: _points,
    GeomKind.LINE: _line,
    GeomKind.PATH: _path,
    GeomKind.BAR: _rects,
    GeomKind.COL: _rects,
    GeomKind.HISTOGRAM: _rects,
    GeomKind.AREA: _areas,
    GeomKind.DENSITY: _areas,
    GeomKind.SMOOTH: _smooth,
    GeomKind.BOXPLOT: _boxplot,
    GeomKind.ERRORBAR: _errorbar,
    GeomKind.SEGMENT: _segment,
    GeomKind.RECT: _rect,
    GeomKind.TEXT: _text,
    GeomKind.HLINE: _hline,
    GeomKind.VLINE: _vline,
}
