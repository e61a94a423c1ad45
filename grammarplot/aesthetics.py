from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeAlias

import numpy as np

from grammarplot.data import Column, DataStore
from grammarplot.errors import InvalidConfiguration, PlotDataError


class Aesthetic(str, Enum):
    X = "x"
    Y = "y"
    XMIN = "xmin"
    XMAX = "xmax"
    YMIN = "ymin"
    YMAX = "ymax"
    LOWER = "lower"
    MIDDLE = "middle"
    UPPER = "upper"
    XBEGIN = "xbegin"
    XEND = "xend"
    YBEGIN = "ybegin"
    YEND = "yend"
    XINTERCEPT = "xintercept"
    YINTERCEPT = "yintercept"
    COLOR = "color"
    FILL = "fill"
    ALPHA = "alpha"
    SIZE = "size"
    SHAPE = "shape"
    LINETYPE = "linetype"
    GROUP = "group"
    LABEL = "label"

    @property
    def is_grouping(self) -> bool:
        return self in GROUPING_AESTHETICS or self is Aesthetic.GROUP

    @property
    def is_x_like(self) -> bool:
        return self in _X_LIKE

    @property
    def is_y_like(self) -> bool:
        return self in _Y_LIKE

    @property
    def is_positional(self) -> bool:
        return self in _X_LIKE or self in _Y_LIKE

    @property
    def family(self) -> "Aesthetic":
        """Aesthetic whose scale this one trains and maps through."""
        if self in _X_LIKE:
            return Aesthetic.X
        if self in _Y_LIKE:
            return Aesthetic.Y
        return self


_X_LIKE = frozenset(
    {Aesthetic.X, Aesthetic.XMIN, Aesthetic.XMAX, Aesthetic.XBEGIN, Aesthetic.XEND, Aesthetic.XINTERCEPT}
)
_Y_LIKE = frozenset(
    {
        Aesthetic.Y,
        Aesthetic.YMIN,
        Aesthetic.YMAX,
        Aesthetic.LOWER,
        Aesthetic.MIDDLE,
        Aesthetic.UPPER,
        Aesthetic.YBEGIN,
        Aesthetic.YEND,
        Aesthetic.YINTERCEPT,
    }
)

# Order defines the composition of composite group keys.
GROUPING_AESTHETICS: tuple[Aesthetic, ...] = (
    Aesthetic.COLOR,
    Aesthetic.FILL,
    Aesthetic.SHAPE,
    Aesthetic.LINETYPE,
)

_ALIASES = {"colour": Aesthetic.COLOR, "line_type": Aesthetic.LINETYPE}


def as_aesthetic(key: Aesthetic | str) -> Aesthetic:
    if isinstance(key, Aesthetic):
        return key
    try:
        return _ALIASES.get(key) or Aesthetic(key)
    except ValueError as exc:
        raise InvalidConfiguration(f"unknown aesthetic: {key!r}") from exc


@dataclass(frozen=True)
class ColumnRef:
    name: str


@dataclass(frozen=True)
class Constant:
    value: Any


@dataclass(frozen=True, eq=False)
class VectorValue:
    values: Column

    @classmethod
    def of(cls, values: Any, name: str = "vector") -> "VectorValue":
        return cls(values=Column.from_values(name, values))


AesValue: TypeAlias = ColumnRef | Constant | VectorValue


def _as_value(value: Any) -> AesValue:
    if isinstance(value, (ColumnRef, Constant, VectorValue)):
        return value
    if isinstance(value, str):
        return ColumnRef(value)
    if isinstance(value, Column):
        return VectorValue(value)
    if isinstance(value, (list, tuple, np.ndarray)):
        return VectorValue.of(value)
    return Constant(value)


class AesMap:
    """Aesthetic → value table. Instances are immutable once built."""

    def __init__(self, values: Mapping[Aesthetic | str, Any] | None = None) -> None:
        self._values: dict[Aesthetic, AesValue] = {}
        for key, value in (values or {}).items():
            self._values[as_aesthetic(key)] = _as_value(value)

    def __contains__(self, key: object) -> bool:
        if isinstance(key, (str, Aesthetic)):
            return as_aesthetic(key) in self._values
        return False

    def __iter__(self) -> Iterator[Aesthetic]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, AesMap) and self._values == other._values

    def __repr__(self) -> str:
        inner = ", ".join(f"{k.value}={v!r}" for k, v in self._values.items())
        return f"AesMap({inner})"

    def items(self) -> Iterator[tuple[Aesthetic, AesValue]]:
        return iter(self._values.items())

    def get(self, key: Aesthetic | str) -> AesValue | None:
        return self._values.get(as_aesthetic(key))

    def column_name(self, key: Aesthetic | str) -> str | None:
        value = self.get(key)
        return value.name if isinstance(value, ColumnRef) else None

    def updated(self, values: Mapping[Aesthetic | str, Any]) -> "AesMap":
        out = AesMap()
        out._values = dict(self._values)
        for key, value in values.items():
            out._values[as_aesthetic(key)] = _as_value(value)
        return out

    def without(self, *keys: Aesthetic | str) -> "AesMap":
        drop = {as_aesthetic(k) for k in keys}
        out = AesMap()
        out._values = {k: v for k, v in self._values.items() if k not in drop}
        return out

    def inherit(self, parent: "AesMap | None") -> "AesMap":
        """Layer-level values override plot-level values key by key."""
        if parent is None:
            return self
        out = AesMap()
        out._values = dict(parent._values)
        out._values.update(self._values)
        return out

    def resolve(self, key: Aesthetic | str, data: DataStore) -> Column | None:
        aesthetic = as_aesthetic(key)
        value = self._values.get(aesthetic)
        if value is None:
            return None
        if isinstance(value, ColumnRef):
            return data.column(value.name)
        if isinstance(value, Constant):
            return Column.repeat(aesthetic.value, value.value, data.nrows)
        if len(value.values) != data.nrows:
            raise PlotDataError(
                f"vector for `{aesthetic.value}` has length {len(value.values)}, data has {data.nrows} rows"
            )
        return value.values

    def validate(self, data: DataStore) -> None:
        """Fail fast on references that the store cannot satisfy."""
        for aesthetic in self._values:
            self.resolve(aesthetic, data)


def aes(**kwargs: Any) -> AesMap:
    """Build a mapping; plain strings are column references."""
    return AesMap(kwargs)
