from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import math
from typing import Protocol

import numpy as np

from grammarplot.aesthetics import AesMap, Aesthetic
from grammarplot.data import Column, ColumnKind, DataStore
from grammarplot.errors import InvalidConfiguration
from grammarplot.grouping import group_ranks
from grammarplot.scales import resolution
from grammarplot.stats import StatOutput


LOGGER = logging.getLogger(__name__)

DODGE_LO = ".dodge_lo"
DODGE_HI = ".dodge_hi"


class Position(Protocol):
    def adjust(self, out: StatOutput) -> StatOutput: ...


def apply_position(position: Position, out: StatOutput) -> StatOutput:
    LOGGER.debug("position %s over %d rows", type(position).__name__, out.data.nrows)
    return position.adjust(out)


def _float(name: str, values: np.ndarray) -> Column:
    return Column.from_values(name, np.asarray(values, dtype=np.float64), ColumnKind.FLOAT)


def _x_keys(data: DataStore, mapping: AesMap) -> list[str]:
    x = mapping.resolve(Aesthetic.X, data)
    if x is None:
        return [""] * data.nrows
    return x.category_keys()


def _row_order(ranks: np.ndarray, reverse: bool) -> np.ndarray:
    """Rows sorted by group rank; rows of one group keep their original order."""
    keys = -ranks if reverse else ranks
    return np.argsort(keys, kind="stable")


@dataclass(frozen=True)
class IdentityPosition:
    def adjust(self, out: StatOutput) -> StatOutput:
        return out


@dataclass(frozen=True)
class Stack:
    """Stack heights at each x; positive and negative values grow away from zero separately."""

    reverse: bool = False

    def heights(self, data: DataStore, mapping: AesMap) -> np.ndarray:
        if Aesthetic.YMIN in mapping and Aesthetic.YMAX in mapping:
            ymin = mapping.resolve(Aesthetic.YMIN, data)
            ymax = mapping.resolve(Aesthetic.YMAX, data)
            assert ymin is not None and ymax is not None
            return ymax.as_float(Aesthetic.YMAX) - ymin.as_float(Aesthetic.YMIN)
        y = mapping.resolve(Aesthetic.Y, data)
        if y is None:
            raise InvalidConfiguration("stack position requires `y` or both `ymin` and `ymax`")
        return y.as_float(Aesthetic.Y)

    def adjust(self, out: StatOutput) -> StatOutput:
        data, mapping = out.data, out.mapping
        if data.nrows == 0:
            return out
        heights = self.heights(data, mapping)
        xkeys = _x_keys(data, mapping)
        ymin = np.full(data.nrows, np.nan)
        ymax = np.full(data.nrows, np.nan)
        positive: dict[str, float] = {}
        negative: dict[str, float] = {}
        for i in _row_order(group_ranks(data), self.reverse).tolist():
            h = float(heights[i])
            if not math.isfinite(h):
                continue
            key = xkeys[i]
            if h >= 0:
                base = positive.get(key, 0.0)
                ymin[i], ymax[i] = base, base + h
                positive[key] = base + h
            else:
                base = negative.get(key, 0.0)
                ymin[i], ymax[i] = base + h, base
                negative[key] = base + h

        stacked = data.with_columns([_float("ymin", ymin), _float("ymax", ymax)])
        new_mapping = mapping.updated({Aesthetic.Y: "ymax", Aesthetic.YMIN: "ymin", Aesthetic.YMAX: "ymax"})
        return replace(out, data=stacked, mapping=new_mapping)


@dataclass(frozen=True)
class Dodge:
    """Place groups side by side; every x gets one slot per group in the layer."""

    width: float = 0.9

    def __post_init__(self) -> None:
        if not math.isfinite(self.width) or self.width <= 0:
            raise InvalidConfiguration("dodge width must be a positive number")

    def slots(self, out: StatOutput) -> int:
        if out.groups:
            return len(out.groups)
        ranks = group_ranks(out.data)
        return int(ranks.max()) + 1 if ranks.size else 1

    def adjust(self, out: StatOutput) -> StatOutput:
        data, mapping = out.data, out.mapping
        n = self.slots(out)
        x = mapping.resolve(Aesthetic.X, data)
        if data.nrows == 0 or x is None:
            return out

        if x.is_discrete:
            dodged = self._offsets(data, n)
            outliers = self._offsets(out.outliers, n) if out.outliers is not None else None
            return replace(out, data=dodged, outliers=outliers)

        xs = x.as_float(Aesthetic.X)
        ranks = group_ranks(data).astype(np.float64)
        if Aesthetic.XMIN in mapping and Aesthetic.XMAX in mapping:
            xmin_col = mapping.resolve(Aesthetic.XMIN, data)
            xmax_col = mapping.resolve(Aesthetic.XMAX, data)
            assert xmin_col is not None and xmax_col is not None
            left = xmin_col.as_float(Aesthetic.XMIN)
            total = xmax_col.as_float(Aesthetic.XMAX) - left
        else:
            total = np.full(data.nrows, self.width * resolution(xs))
            left = xs - total / 2.0
        slot = total / n
        lo = left + ranks * slot
        hi = lo + slot
        dodged = data.with_columns([_float("xmin", lo), _float("xmax", hi), _float("x", (lo + hi) / 2.0)])
        new_mapping = mapping.updated({Aesthetic.X: "x", Aesthetic.XMIN: "xmin", Aesthetic.XMAX: "xmax"})

        outliers = out.outliers
        if outliers is not None and outliers.nrows and "x" in outliers:
            ox = outliers.column("x").as_float(Aesthetic.X)
            oranks = group_ranks(outliers).astype(np.float64)
            ototal = self.width * resolution(xs)
            centers = ox - ototal / 2.0 + (oranks + 0.5) * (ototal / n)
            outliers = outliers.with_column(_float("x", centers))
        LOGGER.debug("dodged %d rows into %d slot(s)", data.nrows, n)
        return replace(out, data=dodged, mapping=new_mapping, outliers=outliers)

    def _offsets(self, data: DataStore, n: int) -> DataStore:
        """Slot bounds relative to the category center, in category-slot units."""
        ranks = group_ranks(data).astype(np.float64)
        slot = self.width / n
        lo = -self.width / 2.0 + ranks * slot
        return data.with_columns([_float(DODGE_LO, lo), _float(DODGE_HI, lo + slot)])
