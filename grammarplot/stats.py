from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
import logging
import math
from typing import Any, Literal, Protocol

import numpy as np
from scipy import stats as sp_stats
from scipy.interpolate import CubicSpline

from grammarplot.aesthetics import AesMap, Aesthetic, ColumnRef, as_aesthetic
from grammarplot.data import Column, ColumnKind, DataStore
from grammarplot.errors import InvalidConfiguration
from grammarplot.grouping import (
    GROUP_COLUMN,
    Group,
    GroupKey,
    carried_columns,
    materialize_vectors,
    split_by_value,
    split_groups,
)


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatOutput:
    data: DataStore
    mapping: AesMap
    groups: tuple[GroupKey, ...] = ()
    outliers: DataStore | None = None


class Stat(Protocol):
    def compute(self, data: DataStore, mapping: AesMap, groups: list[Group]) -> StatOutput: ...


def apply_stat(stat: Stat, data: DataStore, mapping: AesMap) -> StatOutput:
    """Run one stat over every group of `data` and concatenate the results."""
    data, mapping = materialize_vectors(data, mapping)
    groups = split_groups(data, mapping)
    LOGGER.debug("stat %s: %d rows in %d group(s)", type(stat).__name__, data.nrows, len(groups))
    out = stat.compute(data, mapping, groups)
    LOGGER.debug("stat %s produced %d rows", type(stat).__name__, out.data.nrows)
    return out


def _numeric(data: DataStore, mapping: AesMap, aesthetic: Aesthetic, stat_name: str) -> np.ndarray:
    column = mapping.resolve(aesthetic, data)
    if column is None:
        raise InvalidConfiguration(f"stat `{stat_name}` requires the `{aesthetic.value}` aesthetic")
    return column.as_float(aesthetic)


def _required(data: DataStore, mapping: AesMap, aesthetic: Aesthetic, stat_name: str) -> Column:
    column = mapping.resolve(aesthetic, data)
    if column is None:
        raise InvalidConfiguration(f"stat `{stat_name}` requires the `{aesthetic.value}` aesthetic")
    return column


def _float(name: str, values: Any) -> Column:
    return Column.from_values(name, np.asarray(values, dtype=np.float64), ColumnKind.FLOAT)


def _assemble(
    pieces: list[tuple[Group, DataStore]],
    data: DataStore,
    mapping: AesMap,
    *,
    columns: Sequence[str],
) -> DataStore:
    """Attach the grouping columns and group rank to per-group results."""
    carried = [name for name in carried_columns(data, mapping) if name not in columns]
    parts: list[DataStore] = []
    for group, piece in pieces:
        n = piece.nrows
        first = int(group.indices[0])
        extra = [data.column(name).take(np.full(n, first, dtype=np.int64)) for name in carried]
        extra.append(Column.from_values(GROUP_COLUMN, np.full(n, group.rank, dtype=np.int64), ColumnKind.INT))
        parts.append(piece.with_columns(extra))
    if parts:
        return DataStore.concat(parts)

    empty = [_float(name, []) for name in columns]
    empty.extend(data.column(name).take([]) for name in carried)
    empty.append(Column.from_values(GROUP_COLUMN, np.zeros(0, dtype=np.int64), ColumnKind.INT))
    return DataStore(empty)


def _prune(mapping: AesMap, data: DataStore) -> AesMap:
    stale = [aes for aes, value in mapping.items() if isinstance(value, ColumnRef) and value.name not in data]
    if stale:
        LOGGER.debug("dropping aesthetics not produced by stat: %s", [a.value for a in stale])
        return mapping.without(*stale)
    return mapping


def _finish(
    pieces: list[tuple[Group, DataStore]],
    data: DataStore,
    mapping: AesMap,
    groups: list[Group],
    *,
    columns: Sequence[str],
    updates: dict[Aesthetic, str],
    drop: Sequence[Aesthetic] = (),
) -> StatOutput:
    out = _assemble(pieces, data, mapping, columns=columns)
    new_mapping = mapping.without(*drop).updated({aes: ColumnRef(name) for aes, name in updates.items()})
    return StatOutput(data=out, mapping=_prune(new_mapping, out), groups=tuple(g.key for g in groups))


@dataclass(frozen=True)
class Identity:
    def compute(self, data: DataStore, mapping: AesMap, groups: list[Group]) -> StatOutput:
        ranks = np.zeros(data.nrows, dtype=np.int64)
        for group in groups:
            ranks[group.indices] = group.rank
        out = data.with_column(Column.from_values(GROUP_COLUMN, ranks, ColumnKind.INT))
        return StatOutput(data=out, mapping=mapping, groups=tuple(g.key for g in groups))


@dataclass(frozen=True)
class Bin:
    """Histogram binning with one set of edges shared by every group."""

    bins: int = 30
    binwidth: float | None = None
    limits: tuple[float, float] | None = None
    cumulative: bool = False

    def __post_init__(self) -> None:
        if int(self.bins) <= 0:
            raise InvalidConfiguration("bins must be > 0")
        if self.binwidth is not None and (not math.isfinite(self.binwidth) or self.binwidth <= 0):
            raise InvalidConfiguration("binwidth must be a positive finite number")
        if self.limits is not None:
            lo, hi = self.limits
            if not (math.isfinite(lo) and math.isfinite(hi)) or hi <= lo:
                raise InvalidConfiguration(f"bin limits must be finite and increasing, got {self.limits}")

    def edges(self, values: np.ndarray) -> np.ndarray:
        if self.limits is not None:
            lo, hi = (float(v) for v in self.limits)
        else:
            finite = values[np.isfinite(values)]
            if finite.size == 0:
                return np.zeros(0, dtype=np.float64)
            lo, hi = float(np.min(finite)), float(np.max(finite))
            if hi == lo:
                lo -= 0.5
                hi += 0.5

        if self.binwidth is not None:
            n = max(1, int(math.ceil((hi - lo) / self.binwidth - 1e-9)))
            edges = lo + np.arange(n + 1, dtype=np.float64) * self.binwidth
        else:
            n = int(self.bins)
            edges = lo + np.arange(n + 1, dtype=np.float64) * ((hi - lo) / n)
            edges[-1] = hi
        return edges

    def assign(self, values: np.ndarray, edges: np.ndarray) -> np.ndarray:
        """Bin index per value, -1 when outside; intervals are [lo, hi) except the last."""
        n = edges.size - 1
        idx = np.searchsorted(edges, values, side="right") - 1
        idx = np.clip(idx, 0, n - 1)
        inside = np.isfinite(values)
        if self.limits is not None:
            inside &= (values >= edges[0]) & (values <= edges[-1])
        return np.where(inside, idx, -1)

    def compute(self, data: DataStore, mapping: AesMap, groups: list[Group]) -> StatOutput:
        x = _numeric(data, mapping, Aesthetic.X, "bin")
        edges = self.edges(x)
        columns = ("xmin", "x", "xmax", "count", "density", "ymin", "ymax")
        pieces: list[tuple[Group, DataStore]] = []
        if edges.size >= 2:
            lo, hi = edges[:-1], edges[1:]
            width = hi - lo
            for group in groups:
                idx = self.assign(x[group.indices], edges)
                idx = idx[idx >= 0]
                counts = np.bincount(idx, minlength=lo.size).astype(np.int64)
                total = int(counts.sum())
                density = counts / (total * width) if total else np.zeros(lo.size)
                if self.cumulative:
                    counts = np.cumsum(counts)
                pieces.append(
                    (
                        group,
                        DataStore(
                            [
                                _float("xmin", lo),
                                _float("x", (lo + hi) / 2.0),
                                _float("xmax", hi),
                                Column.from_values("count", counts, ColumnKind.INT),
                                _float("density", density),
                                _float("ymin", np.zeros(lo.size)),
                                _float("ymax", counts),
                            ]
                        ),
                    )
                )
        return _finish(
            pieces,
            data,
            mapping,
            groups,
            columns=columns,
            updates={
                Aesthetic.X: "x",
                Aesthetic.XMIN: "xmin",
                Aesthetic.XMAX: "xmax",
                Aesthetic.Y: "count",
                Aesthetic.YMIN: "ymin",
                Aesthetic.YMAX: "ymax",
            },
        )


@dataclass(frozen=True)
class Count:
    """Number of rows at each distinct x within each group."""

    def compute(self, data: DataStore, mapping: AesMap, groups: list[Group]) -> StatOutput:
        x = _required(data, mapping, Aesthetic.X, "count")
        pieces: list[tuple[Group, DataStore]] = []
        for group in groups:
            buckets = split_by_value(x, group.indices)
            if x.is_numeric:
                buckets = [b for b in buckets if np.isfinite(x.values[b[0]])]
            if not buckets:
                continue
            counts = np.asarray([b.size for b in buckets], dtype=np.int64)
            firsts = np.asarray([b[0] for b in buckets], dtype=np.int64)
            pieces.append(
                (
                    group,
                    DataStore(
                        [
                            x.take(firsts).renamed("x"),
                            Column.from_values("count", counts, ColumnKind.INT),
                            _float("prop", counts / counts.sum()),
                            _float("ymin", np.zeros(counts.size)),
                            _float("ymax", counts),
                        ]
                    ),
                )
            )
        return _finish(
            pieces,
            data,
            mapping,
            groups,
            columns=("x", "count", "prop", "ymin", "ymax"),
            updates={Aesthetic.X: "x", Aesthetic.Y: "count", Aesthetic.YMIN: "ymin", Aesthetic.YMAX: "ymax"},
        )


@dataclass(frozen=True)
class Density:
    """Gaussian kernel density estimate on a grid shared by all groups."""

    n: int = 512
    adjust: float = 1.0

    def __post_init__(self) -> None:
        if int(self.n) < 2:
            raise InvalidConfiguration("density needs at least 2 evaluation points")
        if not math.isfinite(self.adjust) or self.adjust <= 0:
            raise InvalidConfiguration("density adjust must be a positive finite number")

    def factor(self, n_obs: int) -> float:
        # Scott's rule: bandwidth = sd * n^(-1/5), scaled by `adjust`.
        return float(n_obs) ** -0.2 * self.adjust

    def bandwidth(self, values: np.ndarray) -> float:
        if values.size < 2:
            return float("nan")
        return float(np.std(values, ddof=1)) * self.factor(values.size)

    def compute(self, data: DataStore, mapping: AesMap, groups: list[Group]) -> StatOutput:
        x = _numeric(data, mapping, Aesthetic.X, "density")
        samples: list[tuple[Group, np.ndarray, float]] = []
        for group in groups:
            values = x[group.indices]
            values = values[np.isfinite(values)]
            if values.size == 0:
                continue
            bw = self.bandwidth(values)
            if not math.isfinite(bw) or bw <= 0:
                raise InvalidConfiguration(
                    f"non-finite bandwidth for group {group.key or '(all)'}: "
                    f"density needs at least 2 distinct values, got {values.size} value(s)"
                )
            samples.append((group, values, bw))

        pieces: list[tuple[Group, DataStore]] = []
        if samples:
            pad = 3.0 * max(bw for _, _, bw in samples)
            lo = min(float(v.min()) for _, v, _ in samples) - pad
            hi = max(float(v.max()) for _, v, _ in samples) + pad
            grid = np.linspace(lo, hi, int(self.n))
            for group, values, _ in samples:
                kde = sp_stats.gaussian_kde(values, bw_method=self.factor(values.size))
                density = kde(grid)
                peak = float(np.max(density))
                pieces.append(
                    (
                        group,
                        DataStore(
                            [
                                _float("x", grid),
                                _float("density", density),
                                _float("count", density * values.size),
                                _float("scaled", density / peak if peak > 0 else density),
                                _float("n", np.full(grid.size, float(values.size))),
                            ]
                        ),
                    )
                )
        return _finish(
            pieces,
            data,
            mapping,
            groups,
            columns=("x", "density", "count", "scaled", "n"),
            updates={Aesthetic.X: "x", Aesthetic.Y: "density"},
        )


SmoothMethod = Literal["lm", "spline", "loess"]


def fit_linear(x: np.ndarray, y: np.ndarray) -> tuple[float, float, float]:
    """Ordinary least squares; returns (intercept, slope, residual standard error)."""
    n = x.size
    x_mean = float(np.mean(x))
    y_mean = float(np.mean(y))
    sxx = float(np.sum((x - x_mean) ** 2))
    if sxx < 1e-12:
        raise InvalidConfiguration("cannot fit a linear model: x values are constant")
    slope = float(np.sum((x - x_mean) * (y - y_mean))) / sxx
    intercept = y_mean - slope * x_mean
    residuals = y - (intercept + slope * x)
    rse = math.sqrt(float(np.sum(residuals**2)) / (n - 2)) if n > 2 else 0.0
    return intercept, slope, rse


def natural_spline(x: np.ndarray, y: np.ndarray) -> CubicSpline:
    """Natural cubic spline through points sorted by x; duplicate x values are averaged."""
    uniq, inverse = np.unique(x, return_inverse=True)
    if uniq.size < 2:
        raise InvalidConfiguration("spline smoothing needs at least 2 distinct x values")
    y_mean = np.bincount(inverse, weights=y) / np.bincount(inverse)
    return CubicSpline(uniq, y_mean, bc_type="natural")


def loess(x: np.ndarray, y: np.ndarray, grid: np.ndarray, span: float) -> np.ndarray:
    n = x.size
    q = min(n, max(2, int(n * span)))
    out = np.empty(grid.size, dtype=np.float64)
    for i, x0 in enumerate(grid):
        dist = np.abs(x - x0)
        near = np.argsort(dist, kind="stable")[:q]
        max_dist = max(float(dist[near[-1]]), 1e-10)
        u = dist[near] / max_dist
        w = np.where(u < 1.0, (1.0 - u**3) ** 3, 0.0)
        if float(w.sum()) <= 0:
            w = np.ones(q)
        xs, ys = x[near], y[near]
        sw = w.sum()
        sx, sy = (w * xs).sum(), (w * ys).sum()
        sxx, sxy = (w * xs * xs).sum(), (w * xs * ys).sum()
        denom = sw * sxx - sx * sx
        if abs(denom) > 1e-10:
            b = (sw * sxy - sx * sy) / denom
            a = (sy - b * sx) / sw
        else:
            a, b = sy / sw, 0.0
        out[i] = a + b * x0
    return out


@dataclass(frozen=True)
class Smooth:
    method: SmoothMethod = "lm"
    n: int = 80
    se: bool = True
    level: float = 0.95
    span: float = 0.75

    def __post_init__(self) -> None:
        if self.method not in {"lm", "spline", "loess"}:
            raise InvalidConfiguration(f"unsupported smoothing method: {self.method}")
        if int(self.n) < 2:
            raise InvalidConfiguration("smooth needs at least 2 evaluation points")
        if not 0.0 < self.level < 1.0:
            raise InvalidConfiguration("confidence level must be in (0, 1)")
        if not 0.0 < self.span <= 1.0:
            raise InvalidConfiguration("loess span must be in (0, 1]")

    @property
    def has_band(self) -> bool:
        return self.method == "lm" and self.se

    def fit_group(self, x: np.ndarray, y: np.ndarray) -> DataStore:
        xmin, xmax = float(np.min(x)), float(np.max(x))
        if xmax - xmin <= 0:
            raise InvalidConfiguration("cannot smooth over a single x value")
        grid = np.linspace(xmin, xmax, int(self.n))
        cols = [_float("x", grid)]

        if self.method == "lm":
            if x.size < 2:
                raise InvalidConfiguration("linear smoothing needs at least 2 points")
            intercept, slope, rse = fit_linear(x, y)
            fitted = intercept + slope * grid
            cols.append(_float("y", fitted))
            if self.se:
                x_mean = float(np.mean(x))
                sxx = float(np.sum((x - x_mean) ** 2))
                se = rse * np.sqrt(1.0 / x.size + (grid - x_mean) ** 2 / sxx)
                t = float(sp_stats.t.ppf((1.0 + self.level) / 2.0, x.size - 2)) if x.size > 2 else 0.0
                cols.extend([_float("ymin", fitted - t * se), _float("ymax", fitted + t * se), _float("se", se)])
        elif self.method == "spline":
            cols.append(_float("y", natural_spline(x, y)(grid)))
        else:
            if x.size < 3:
                raise InvalidConfiguration("loess smoothing needs at least 3 points")
            cols.append(_float("y", loess(x, y, grid, self.span)))
        return DataStore(cols)

    def compute(self, data: DataStore, mapping: AesMap, groups: list[Group]) -> StatOutput:
        x = _numeric(data, mapping, Aesthetic.X, "smooth")
        y = _numeric(data, mapping, Aesthetic.Y, "smooth")
        pieces: list[tuple[Group, DataStore]] = []
        for group in groups:
            gx, gy = x[group.indices], y[group.indices]
            ok = np.isfinite(gx) & np.isfinite(gy)
            if not np.any(ok):
                continue
            pieces.append((group, self.fit_group(gx[ok], gy[ok])))

        columns = ("x", "y", "ymin", "ymax", "se") if self.has_band else ("x", "y")
        updates = {Aesthetic.X: "x", Aesthetic.Y: "y"}
        if self.has_band:
            updates.update({Aesthetic.YMIN: "ymin", Aesthetic.YMAX: "ymax"})
        return _finish(pieces, data, mapping, groups, columns=columns, updates=updates)


def _sd(values: np.ndarray) -> float:
    return float(np.std(values, ddof=1)) if values.size > 1 else 0.0


REDUCERS: dict[str, Callable[[np.ndarray], float]] = {
    "mean": lambda v: float(np.mean(v)),
    "median": lambda v: float(np.median(v)),
    "min": lambda v: float(np.min(v)),
    "max": lambda v: float(np.max(v)),
    "sum": lambda v: float(np.sum(v)),
    "sd": _sd,
    "count": lambda v: float(v.size),
}


def _reducer(name: str | None) -> Callable[[np.ndarray], float] | None:
    if name is None:
        return None
    try:
        return REDUCERS[name]
    except KeyError as exc:
        raise InvalidConfiguration(f"unknown summary function: {name} (choose from {sorted(REDUCERS)})") from exc


def _constant_within(column: Column, groups: list[Group]) -> bool:
    return all(len(split_by_value(column, group.indices)) <= 1 for group in groups)


@dataclass(frozen=True)
class Summary:
    """Reduce aesthetics to one row per group; x is kept only when it is constant within every group."""

    fun: str = "mean"
    aesthetics: tuple[str, ...] = ("y",)
    fun_min: str | None = None
    fun_max: str | None = None

    def __post_init__(self) -> None:
        _reducer(self.fun)
        _reducer(self.fun_min)
        _reducer(self.fun_max)
        if not self.aesthetics:
            raise InvalidConfiguration("summary needs at least one aesthetic to reduce")

    def compute(self, data: DataStore, mapping: AesMap, groups: list[Group]) -> StatOutput:
        targets = [as_aesthetic(a) for a in self.aesthetics]
        values = {aes: _numeric(data, mapping, aes, "summary") for aes in targets}
        x = mapping.resolve(Aesthetic.X, data) if Aesthetic.X not in targets else None
        if x is not None and not _constant_within(x, groups):
            LOGGER.debug("summary: x varies within a group; dropping it from the output")
            x = None
        fun = _reducer(self.fun)
        fun_min = _reducer(self.fun_min)
        fun_max = _reducer(self.fun_max)
        assert fun is not None

        pieces: list[tuple[Group, DataStore]] = []
        for group in groups:
            idx = group.indices
            cols: list[Column] = []
            if x is not None:
                cols.append(x.take(idx[:1]).renamed("x"))
            for aes in targets:
                v = values[aes][idx]
                v = v[np.isfinite(v)]
                cols.append(_float(aes.value, [fun(v) if v.size else float("nan")]))
            first = values[targets[0]][idx]
            first = first[np.isfinite(first)]
            for name, reduce in (("ymin", fun_min), ("ymax", fun_max)):
                if reduce is not None:
                    cols.append(_float(name, [reduce(first) if first.size else float("nan")]))
            pieces.append((group, DataStore(cols)))

        columns = (["x"] if x is not None else []) + [a.value for a in targets]
        updates = {aes: aes.value for aes in targets}
        if x is not None:
            updates[Aesthetic.X] = "x"
        if fun_min is not None:
            columns.append("ymin")
            updates[Aesthetic.YMIN] = "ymin"
        if fun_max is not None:
            columns.append("ymax")
            updates[Aesthetic.YMAX] = "ymax"
        return _finish(pieces, data, mapping, groups, columns=columns, updates=updates)


def quantile(sorted_values: np.ndarray, p: float) -> float:
    """Linear-interpolation quantile (Hyndman & Fan type 7)."""
    return float(np.quantile(sorted_values, p, method="linear"))


@dataclass(frozen=True)
class BoxSummary:
    ymin: float
    lower: float
    middle: float
    upper: float
    ymax: float
    outliers: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @property
    def iqr(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True)
class Boxplot:
    coef: float = 1.5

    def __post_init__(self) -> None:
        if not math.isfinite(self.coef) or self.coef < 0:
            raise InvalidConfiguration("boxplot coef must be a non-negative finite number")

    def summarize(self, values: np.ndarray) -> BoxSummary:
        data = np.sort(values[np.isfinite(values)])
        if data.size == 1:
            v = float(data[0])
            return BoxSummary(v, v, v, v, v)
        q1, median, q3 = (quantile(data, p) for p in (0.25, 0.5, 0.75))
        iqr = q3 - q1
        lower_fence = q1 - self.coef * iqr
        upper_fence = q3 + self.coef * iqr
        inside = data[(data >= lower_fence) & (data <= upper_fence)]
        return BoxSummary(
            ymin=float(inside[0]) if inside.size else float(data[0]),
            lower=q1,
            middle=median,
            upper=q3,
            ymax=float(inside[-1]) if inside.size else float(data[-1]),
            outliers=data[(data < lower_fence) | (data > upper_fence)],
        )

    def compute(self, data: DataStore, mapping: AesMap, groups: list[Group]) -> StatOutput:
        y = _numeric(data, mapping, Aesthetic.Y, "boxplot")
        x = mapping.resolve(Aesthetic.X, data)
        pieces: list[tuple[Group, DataStore]] = []
        outlier_pieces: list[tuple[Group, DataStore]] = []
        for group in groups:
            splits = split_by_value(x, group.indices) if x is not None else [group.indices]
            summaries: list[BoxSummary] = []
            firsts: list[int] = []
            counts: list[int] = []
            for idx in splits:
                finite = y[idx][np.isfinite(y[idx])]
                if finite.size == 0:
                    continue
                summaries.append(self.summarize(finite))
                firsts.append(int(idx[0]))
                counts.append(int(finite.size))
            if not summaries:
                continue

            x_col = x.take(firsts).renamed("x") if x is not None else _float("x", np.zeros(len(firsts)))
            pieces.append(
                (
                    group,
                    DataStore(
                        [
                            x_col,
                            _float("ymin", [s.ymin for s in summaries]),
                            _float("lower", [s.lower for s in summaries]),
                            _float("middle", [s.middle for s in summaries]),
                            _float("upper", [s.upper for s in summaries]),
                            _float("ymax", [s.ymax for s in summaries]),
                            Column.from_values("n", counts, ColumnKind.INT),
                        ]
                    ),
                )
            )
            reps = [np.full(s.outliers.size, i, dtype=np.int64) for i, s in enumerate(summaries)]
            rep = np.concatenate(reps) if reps else np.zeros(0, dtype=np.int64)
            if rep.size:
                outlier_pieces.append(
                    (group, DataStore([x_col.take(rep), _float("y", np.concatenate([s.outliers for s in summaries]))]))
                )

        out = _finish(
            pieces,
            data,
            mapping,
            groups,
            columns=("x", "ymin", "lower", "middle", "upper", "ymax", "n"),
            updates={
                Aesthetic.X: "x",
                Aesthetic.YMIN: "ymin",
                Aesthetic.LOWER: "lower",
                Aesthetic.MIDDLE: "middle",
                Aesthetic.UPPER: "upper",
                Aesthetic.YMAX: "ymax",
            },
            drop=(Aesthetic.Y,),
        )
        outliers = _assemble(outlier_pieces, data, mapping, columns=("x", "y"))
        return StatOutput(data=out.data, mapping=out.mapping, groups=out.groups, outliers=outliers)
