from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
import logging
import math
from typing import Any, TypeAlias

import numpy as np

from grammarplot.aesthetics import AesMap, Aesthetic, Constant, as_aesthetic
from grammarplot.data import Column, DataStore, category_key
from grammarplot.errors import AestheticDomainMismatch, InvalidConfiguration
from grammarplot.visuals import (
    DEFAULT_GRADIENT,
    LINETYPE_CYCLE,
    RGBA,
    SHAPE_CYCLE,
    Shape,
    discrete_palette,
    interpolate_colors,
    parse_color,
)


LOGGER = logging.getLogger(__name__)

# Step multipliers in order of preference; earlier entries win ties.
_Q = (1.0, 5.0, 2.0, 2.5, 4.0)

NA_COLOR: RGBA = (128, 128, 128, 255)


def extended_breaks(lo: float, hi: float, n: int = 5, *, density_weight: float = 1.0, clamp: bool = False) -> np.ndarray:
    """Pick nicely spaced breaks covering [lo, hi], aiming for about `n` of them."""
    if n < 2:
        return np.asarray([lo, hi], dtype=np.float64)
    if abs(hi - lo) < 1e-10:
        if abs(lo) < 1e-10:
            return np.asarray([-1.0, 0.0, 1.0])
        pad = abs(lo) * 0.1
        return np.asarray([lo - pad, lo, lo + pad])

    span = hi - lo
    best = np.asarray([lo, hi], dtype=np.float64)
    best_score = -math.inf
    for q in _Q:
        w = span / (n - 1) / q
        step = q * 10.0 ** math.floor(math.log10(w))
        start = math.floor(lo / step) * step
        end = math.ceil(hi / step) * step
        count = int(round((end - start) / step)) + 1
        breaks = start + np.arange(count, dtype=np.float64) * step
        # Normalize floating-point drift so values like -4.44e-16 become 0.
        breaks = np.rint(breaks / step) * step
        breaks[np.isclose(breaks, 0.0, rtol=0.0, atol=step * 1e-9)] = 0.0
        if clamp:
            tol = span * 1e-9
            breaks = breaks[(breaks >= lo - tol) & (breaks <= hi + tol)]
            if breaks.size == 0:
                continue
        coverage = (abs(lo - breaks[0]) + abs(breaks[-1] - hi)) / span
        simplicity = 1.0 if q == 1.0 else 0.5
        score = -coverage - density_weight * (breaks.size - n) ** 2 + simplicity
        if score > best_score:
            best_score = score
            best = breaks
    LOGGER.debug("extended breaks for (%s, %s) n=%d: %s", lo, hi, n, best.tolist())
    return best


def format_number(value: float, decimals: int) -> str:
    if not np.isfinite(value):
        return str(value)
    abs_v = abs(value)
    if abs_v != 0 and (abs_v >= 1e6 or abs_v < 1e-4):
        return np.format_float_scientific(value, precision=min(decimals, 2), unique=False, trim="-")

    d = Decimal(str(value))
    quant = Decimal("1").scaleb(-decimals)
    try:
        q = d.quantize(quant)
    except InvalidOperation:
        q = d
    if q.is_zero():
        q = q.copy_abs()
    out = format(q, ",f")
    # fractional part only; "1,200" keeps its zeros
    if "." in out:
        out = out.rstrip("0").rstrip(".")
    return out


def format_breaks(breaks: Sequence[float] | np.ndarray) -> list[str]:
    values = np.asarray(breaks, dtype=np.float64)
    if values.size == 0:
        return []
    gaps = np.abs(np.diff(values))
    gaps = gaps[gaps > 1e-10]
    step = float(np.min(gaps)) if gaps.size else None
    decimals = _decimals_from_step(step) if step is not None else 6
    out: list[str] = []
    for v in values.tolist():
        if step is not None and abs(v) <= step * 1e-9:
            v = 0.0
        out.append(format_number(v, decimals))
    return out


def _decimals_from_step(step: float) -> int:
    if step <= 0 or not np.isfinite(step):
        return 6
    if step >= 1.0:
        return 0
    d = Decimal(f"{step:.12g}").normalize()
    exp = d.as_tuple().exponent
    decimals = max(0, -int(exp))
    return min(12, decimals)


def resolution(values: np.ndarray, *, default: float = 1.0) -> float:
    """Smallest significant gap between distinct finite values."""
    finite = values[np.isfinite(values)]
    uniq = np.unique(finite)
    if uniq.size < 2:
        return default
    diffs = np.diff(uniq)
    span = float(uniq[-1] - uniq[0])
    eps = max(1e-12, span * 1e-9)
    significant = diffs[diffs > eps]
    if significant.size == 0:
        return default
    return float(np.min(significant))


@dataclass
class ContinuousScale:
    """Linear map from a trained numeric domain onto [0, 1]."""

    aesthetic: Aesthetic
    title: str | None = None
    limits: tuple[float, float] | None = None
    expand: float | None = None
    break_values: tuple[float, ...] | None = None
    break_labels: tuple[str, ...] | None = None
    _domain: tuple[float, float] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.aesthetic = as_aesthetic(self.aesthetic)
        if self.limits is not None:
            lo, hi = (float(v) for v in self.limits)
            if not (math.isfinite(lo) and math.isfinite(hi)) or hi <= lo:
                raise InvalidConfiguration(f"scale limits must be finite and increasing, got {self.limits}")
            self.limits = (lo, hi)
        if self.expand is not None and (not math.isfinite(self.expand) or self.expand < 0):
            raise InvalidConfiguration("scale expansion must be a non-negative number")
        if self.break_labels is not None and self.break_values is None:
            raise InvalidConfiguration("break labels need explicit break values")
        if self.break_labels is not None and len(self.break_labels) != len(self.break_values or ()):
            raise InvalidConfiguration("break labels and break values must have the same length")

    @property
    def is_continuous(self) -> bool:
        return True

    def untrained(self) -> "ContinuousScale":
        return replace(self)

    def train(self, column: Column) -> None:
        values = column.as_float(self.aesthetic)
        self.train_values(values)

    def train_values(self, values: np.ndarray) -> None:
        finite = np.asarray(values, dtype=np.float64)
        finite = finite[np.isfinite(finite)]
        if finite.size == 0:
            return
        lo, hi = float(np.min(finite)), float(np.max(finite))
        if self._domain is not None:
            lo, hi = min(lo, self._domain[0]), max(hi, self._domain[1])
        self._domain = (lo, hi)

    @property
    def trained(self) -> bool:
        return self._domain is not None

    @property
    def domain(self) -> tuple[float, float] | None:
        """Trained data range, or the user limits when given."""
        return self.limits if self.limits is not None else self._domain

    @property
    def range(self) -> tuple[float, float]:
        """Limits used for mapping, after expansion."""
        if self.limits is not None:
            return self.limits
        if self._domain is None:
            return (0.0, 1.0)
        lo, hi = self._domain
        if hi == lo:
            pad = abs(lo) * 0.1 if abs(lo) >= 1e-10 else 1.0
            lo, hi = lo - pad, hi + pad
        ratio = self.expand or 0.0
        pad = (hi - lo) * ratio
        return (lo - pad, hi + pad)

    def map(self, value: float) -> float | None:
        lo, hi = self.range
        t = (float(value) - lo) / (hi - lo)
        if not math.isfinite(t) or t < -1e-9 or t > 1.0 + 1e-9:
            return None
        return min(1.0, max(0.0, t))

    def map_array(self, values: np.ndarray) -> np.ndarray:
        """Vectorized `map`; NaN marks values outside the range."""
        lo, hi = self.range
        t = (np.asarray(values, dtype=np.float64) - lo) / (hi - lo)
        inside = np.isfinite(t) & (t >= -1e-9) & (t <= 1.0 + 1e-9)
        return np.where(inside, np.clip(t, 0.0, 1.0), np.nan)

    def inverse(self, t: float) -> float:
        lo, hi = self.range
        return lo + float(t) * (hi - lo)

    def map_value(self, value: Any) -> Any:
        return self.map(value)

    def breaks(self, n: int = 5, *, clamp: bool = False) -> np.ndarray:
        lo, hi = self.range
        if self.break_values is not None:
            values = np.asarray(self.break_values, dtype=np.float64)
        else:
            domain = self.domain
            if domain is None:
                return np.zeros(0, dtype=np.float64)
            values = extended_breaks(domain[0], domain[1], n, clamp=clamp)
        tol = (hi - lo) * 1e-9
        return values[(values >= lo - tol) & (values <= hi + tol)]

    def labels(self, n: int = 5, *, clamp: bool = False) -> list[str]:
        if self.break_labels is not None:
            keep = set(self.breaks(n).tolist())
            return [label for v, label in zip(self.break_values or (), self.break_labels) if v in keep]
        return format_breaks(self.breaks(n, clamp=clamp))


@dataclass
class ColorGradientScale(ContinuousScale):
    anchors: tuple[Any, ...] = DEFAULT_GRADIENT
    na_value: Any = NA_COLOR

    def __post_init__(self) -> None:
        super().__post_init__()
        if len(self.anchors) < 2:
            raise InvalidConfiguration("a color gradient needs at least 2 anchors")
        self.anchors = tuple(parse_color(a) for a in self.anchors)
        self.na_value = parse_color(self.na_value)

    def map_value(self, value: Any) -> RGBA:
        t = self.map(value)
        if t is None:
            return self.na_value
        return interpolate_colors(self.anchors, t)


@dataclass
class SizeScale(ContinuousScale):
    """Area-proportional size: the squared size is linear in the data."""

    output_range: tuple[float, float] = (1.0, 6.0)

    def map_value(self, value: Any) -> float | None:
        t = self.map(value)
        if t is None:
            return None
        lo, hi = self.output_range
        return math.sqrt(lo * lo + t * (hi * hi - lo * lo))


@dataclass
class AlphaScale(ContinuousScale):
    output_range: tuple[float, float] = (0.1, 1.0)

    def map_value(self, value: Any) -> float | None:
        t = self.map(value)
        if t is None:
            return None
        lo, hi = self.output_range
        return lo + t * (hi - lo)


@dataclass
class CategoricalScale:
    """Ordered categories, each owning an equal slot of [0, 1]."""

    aesthetic: Aesthetic
    title: str | None = None
    categories: tuple[Any, ...] | None = None
    _seen: list[str] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self.aesthetic = as_aesthetic(self.aesthetic)
        if self.categories is not None:
            keys = [category_key(c) for c in self.categories]
            if len(set(keys)) != len(keys):
                raise InvalidConfiguration(f"duplicate categories in scale for `{self.aesthetic.value}`")
            self.categories = tuple(keys)

    @property
    def is_continuous(self) -> bool:
        return False

    def untrained(self) -> "CategoricalScale":
        return replace(self)

    def train(self, column: Column) -> None:
        self.train_values(column.category_keys())

    def train_values(self, values: Sequence[Any]) -> None:
        seen = set(self._seen)
        for value in values:
            key = category_key(value)
            if key not in seen:
                seen.add(key)
                self._seen.append(key)

    @property
    def trained(self) -> bool:
        return bool(self._seen)

    @property
    def domain(self) -> tuple[str, ...]:
        if self.categories is not None:
            return self.categories
        return tuple(sorted(self._seen))

    def ordinal(self, value: Any) -> int | None:
        key = category_key(value)
        try:
            return self.domain.index(key)
        except ValueError:
            return None

    @property
    def slot_width(self) -> float:
        n = len(self.domain)
        return 1.0 / n if n else 1.0

    def map_category(self, value: Any) -> float:
        i = self.ordinal(value)
        if i is None:
            LOGGER.warning("unknown category %r for scale `%s`; mapping to 0.0", value, self.aesthetic.value)
            return 0.0
        return (i + 0.5) / len(self.domain)

    def map(self, value: Any) -> float | None:
        return self.map_category(value)

    def map_value(self, value: Any) -> Any:
        return self.map_category(value)

    def breaks(self, n: int | None = None, *, clamp: bool = False) -> list[str]:
        return list(self.domain)

    def labels(self, n: int | None = None, *, clamp: bool = False) -> list[str]:
        return list(self.domain)


@dataclass
class DiscreteColorScale(CategoricalScale):
    palette: tuple[Any, ...] | None = None
    na_value: Any = NA_COLOR

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.palette is not None:
            if not self.palette:
                raise InvalidConfiguration("a color palette needs at least one color")
            self.palette = tuple(parse_color(c) for c in self.palette)
        self.na_value = parse_color(self.na_value)

    def colors(self) -> list[RGBA]:
        n = len(self.domain)
        if self.palette is not None:
            return [self.palette[i % len(self.palette)] for i in range(n)]
        return discrete_palette(n)

    def map_value(self, value: Any) -> RGBA:
        i = self.ordinal(value)
        if i is None:
            LOGGER.warning("unknown category %r for scale `%s`", value, self.aesthetic.value)
            return self.na_value
        return self.colors()[i]


@dataclass
class ShapeScale(CategoricalScale):
    shapes: tuple[Shape, ...] = SHAPE_CYCLE

    def map_value(self, value: Any) -> Shape:
        i = self.ordinal(value)
        return self.shapes[(i or 0) % len(self.shapes)]


@dataclass
class LinetypeScale(CategoricalScale):
    linetypes: tuple[str, ...] = LINETYPE_CYCLE

    def map_value(self, value: Any) -> str:
        i = self.ordinal(value)
        return self.linetypes[(i or 0) % len(self.linetypes)]


Scale: TypeAlias = ContinuousScale | CategoricalScale

# Aesthetics that never get a scale.
_UNSCALED = frozenset({Aesthetic.GROUP, Aesthetic.LABEL})


def default_scale(aesthetic: Aesthetic, column: Column, *, expand: float = 0.05) -> Scale:
    """Pick the scale variant for an aesthetic family from the data it sees first."""
    aesthetic = aesthetic.family
    if aesthetic in {Aesthetic.X, Aesthetic.Y}:
        if column.is_numeric:
            return ContinuousScale(aesthetic, expand=expand)
        return CategoricalScale(aesthetic)
    if aesthetic in {Aesthetic.COLOR, Aesthetic.FILL}:
        if column.is_numeric:
            return ColorGradientScale(aesthetic)
        return DiscreteColorScale(aesthetic)
    if aesthetic in {Aesthetic.SHAPE, Aesthetic.LINETYPE}:
        if column.is_numeric:
            raise AestheticDomainMismatch(aesthetic, expected="discrete (str or bool)", actual=f"continuous ({column.kind.value})")
        return ShapeScale(aesthetic) if aesthetic is Aesthetic.SHAPE else LinetypeScale(aesthetic)
    if aesthetic in {Aesthetic.SIZE, Aesthetic.ALPHA}:
        if column.is_discrete:
            raise AestheticDomainMismatch(aesthetic, expected="continuous (float or int)", actual=f"discrete ({column.kind.value})")
        return SizeScale(aesthetic) if aesthetic is Aesthetic.SIZE else AlphaScale(aesthetic)
    raise InvalidConfiguration(f"no scale available for aesthetic `{aesthetic.value}`")


class ScaleSet:
    """One scale per aesthetic family, trained once over every layer's data."""

    def __init__(self, overrides: Mapping[Aesthetic | str, Scale] | None = None, *, expand: float = 0.05) -> None:
        self.expand = expand
        self._overrides: dict[Aesthetic, Scale] = {}
        for key, scale in (overrides or {}).items():
            self._overrides[as_aesthetic(key).family] = scale.untrained()
        self._scales: dict[Aesthetic, Scale] = {}
        self._trained = False

    def __contains__(self, key: object) -> bool:
        if isinstance(key, (str, Aesthetic)):
            return as_aesthetic(key).family in self._scales
        return False

    def __getitem__(self, key: Aesthetic | str) -> Scale:
        return self._scales[as_aesthetic(key).family]

    def __iter__(self) -> Iterator[Aesthetic]:
        return iter(self._scales)

    def get(self, key: Aesthetic | str) -> Scale | None:
        return self._scales.get(as_aesthetic(key).family)

    def items(self) -> Iterator[tuple[Aesthetic, Scale]]:
        return iter(self._scales.items())

    @property
    def trained(self) -> bool:
        return self._trained

    def _scale_for(self, aesthetic: Aesthetic, column: Column) -> Scale:
        family = aesthetic.family
        scale = self._scales.get(family)
        if scale is not None:
            return scale
        override = self._overrides.get(family)
        if override is not None:
            if isinstance(override, ContinuousScale) and override.expand is None and family in {Aesthetic.X, Aesthetic.Y}:
                override = replace(override, expand=self.expand)
            scale = override
        else:
            scale = default_scale(family, column, expand=self.expand)
        LOGGER.debug("scale for %s: %s", family.value, type(scale).__name__)
        self._scales[family] = scale
        return scale

    def train_column(self, aesthetic: Aesthetic, column: Column) -> None:
        self._scale_for(aesthetic, column).train(column)

    def train(self, layers: Sequence[tuple[DataStore, AesMap]], extra: Sequence[tuple[Aesthetic, Column]] = ()) -> None:
        if self._trained:
            raise InvalidConfiguration("scale set has already been trained for this build")
        for data, mapping in layers:
            for aesthetic, value in mapping.items():
                if aesthetic in _UNSCALED:
                    continue
                if isinstance(value, Constant) and not aesthetic.is_positional:
                    continue
                column = mapping.resolve(aesthetic, data)
                if column is None:
                    continue
                self.train_column(aesthetic, column)
        for aesthetic, column in extra:
            self.train_column(aesthetic, column)
        self._trained = True
        LOGGER.debug("trained scales: %s", [a.value for a in self._scales])
