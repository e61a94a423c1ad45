from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

import numpy as np

from grammarplot.errors import AestheticDomainMismatch, MissingColumn, PlotDataError


class ColumnKind(str, Enum):
    FLOAT = "float"
    INT = "int"
    STR = "str"
    BOOL = "bool"


_DTYPES = {
    ColumnKind.FLOAT: np.float64,
    ColumnKind.INT: np.int64,
    ColumnKind.BOOL: np.bool_,
    ColumnKind.STR: object,
}


def category_key(value: Any) -> str:
    """Uniform string form used for category membership and group keys."""
    if isinstance(value, (bool, np.bool_)):
        return "true" if value else "false"
    if isinstance(value, (float, np.floating)):
        fval = float(value)
        if np.isfinite(fval) and fval.is_integer():
            return str(int(fval))
        return repr(fval)
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class Column:
    name: str
    values: np.ndarray
    kind: ColumnKind

    @classmethod
    def from_values(cls, name: str, values: Any, kind: ColumnKind | str | None = None) -> "Column":
        if isinstance(values, Column):
            values = values.values
        if kind is None:
            arr = _coerce_1d(values, label=name)
            kind = _infer_kind(arr)
        else:
            kind = ColumnKind(kind)
            arr = _coerce_1d(values, label=name)
        arr = _cast(arr, kind, label=name)
        arr.setflags(write=False)
        return cls(name=name, values=arr, kind=kind)

    @classmethod
    def repeat(cls, name: str, value: Any, n: int) -> "Column":
        kind = _infer_kind(np.asarray([value], dtype=object))
        arr = np.empty(n, dtype=_DTYPES[kind])
        arr[:] = value
        arr.setflags(write=False)
        return cls(name=name, values=arr, kind=kind)

    def __len__(self) -> int:
        return int(self.values.shape[0])

    @property
    def is_numeric(self) -> bool:
        return self.kind in {ColumnKind.FLOAT, ColumnKind.INT}

    @property
    def is_discrete(self) -> bool:
        return not self.is_numeric

    def as_float(self, aesthetic: Any = None) -> np.ndarray:
        if not self.is_numeric:
            raise AestheticDomainMismatch(
                aesthetic if aesthetic is not None else self.name,
                expected="continuous (float or int)",
                actual=f"discrete ({self.kind.value})",
            )
        return self.values.astype(np.float64, copy=False)

    def category_keys(self) -> list[str]:
        return [category_key(v) for v in self.values.tolist()]

    def take(self, indices: Sequence[int] | np.ndarray) -> "Column":
        idx = np.asarray(indices, dtype=np.int64)
        arr = self.values[idx]
        arr.setflags(write=False)
        return Column(name=self.name, values=arr, kind=self.kind)

    def renamed(self, name: str) -> "Column":
        return Column(name=name, values=self.values, kind=self.kind)


class DataStore:
    """Insertion-ordered set of equal-length named columns."""

    def __init__(self, columns: Iterable[Column] | None = None) -> None:
        self._columns: dict[str, Column] = {}
        self._nrows: int | None = None
        for column in columns or ():
            self._insert(column)

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> "DataStore":
        return cls(Column.from_values(str(name), values) for name, values in mapping.items())

    @classmethod
    def concat(cls, stores: Sequence["DataStore"]) -> "DataStore":
        parts = [s for s in stores if s.column_names]
        if not parts:
            return cls()
        names = parts[0].column_names
        for part in parts[1:]:
            if part.column_names != names:
                raise PlotDataError(f"cannot concatenate stores with different columns: {names} != {part.column_names}")
        out: list[Column] = []
        for name in names:
            cols = [p.column(name) for p in parts]
            kinds = {c.kind for c in cols}
            if len(kinds) == 1:
                kind = cols[0].kind
            elif kinds <= {ColumnKind.FLOAT, ColumnKind.INT}:
                kind = ColumnKind.FLOAT
            else:
                kind = ColumnKind.STR
            if kind is ColumnKind.STR and len(kinds) > 1:
                merged = np.asarray([category_key(v) for c in cols for v in c.values.tolist()], dtype=object)
            else:
                merged = np.concatenate([c.values.astype(_DTYPES[kind], copy=False) for c in cols])
            out.append(Column.from_values(name, merged, kind))
        return cls(out)

    def _insert(self, column: Column) -> None:
        n = len(column)
        others = [name for name in self._columns if name != column.name]
        if others and n != self._nrows:
            raise PlotDataError(f"column `{column.name}` has length {n}, store has {self._nrows} rows")
        self._columns[column.name] = column
        self._nrows = n

    @property
    def nrows(self) -> int:
        return self._nrows or 0

    def __len__(self) -> int:
        return self.nrows

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(self._columns)

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __iter__(self):
        return iter(self._columns.values())

    def get(self, name: str) -> Column | None:
        return self._columns.get(name)

    def column(self, name: str) -> Column:
        col = self._columns.get(name)
        if col is None:
            raise MissingColumn(name, self.column_names)
        return col

    def with_column(self, column: Column) -> "DataStore":
        return self.with_columns([column])

    def with_columns(self, columns: Iterable[Column]) -> "DataStore":
        out = DataStore(self._columns.values())
        for column in columns:
            out._insert(column)
        return out

    def without(self, *names: str) -> "DataStore":
        return DataStore(c for n, c in self._columns.items() if n not in names)

    def take(self, indices: Sequence[int] | np.ndarray) -> "DataStore":
        return DataStore(c.take(indices) for c in self._columns.values())

    def to_dict(self) -> dict[str, list[Any]]:
        return {name: col.values.tolist() for name, col in self._columns.items()}

    def __repr__(self) -> str:
        cols = ", ".join(f"{c.name}:{c.kind.value}" for c in self._columns.values())
        return f"DataStore(nrows={self.nrows}, columns=[{cols}])"


def _coerce_1d(value: Any, *, label: str) -> np.ndarray:
    if isinstance(value, np.ndarray):
        if value.ndim != 1:
            raise PlotDataError(f"{label} must be 1-D")
        return value
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return np.asarray(list(value), dtype=object)
    if isinstance(value, Iterable) and not isinstance(value, (str, bytes, bytearray, Mapping)):
        return np.asarray(list(value), dtype=object)
    raise PlotDataError(f"unsupported {label} input type: {type(value)!r}")


def _infer_kind(arr: np.ndarray) -> ColumnKind:
    if arr.dtype.kind == "b":
        return ColumnKind.BOOL
    if arr.dtype.kind in {"i", "u"}:
        return ColumnKind.INT
    if arr.dtype.kind == "f":
        return ColumnKind.FLOAT
    items = [v for v in arr.tolist() if v is not None]
    if not items:
        return ColumnKind.FLOAT
    if all(isinstance(v, (bool, np.bool_)) for v in items):
        return ColumnKind.BOOL
    if all(isinstance(v, (int, np.integer)) and not isinstance(v, (bool, np.bool_)) for v in items):
        return ColumnKind.INT if len(items) == arr.shape[0] else ColumnKind.FLOAT
    if all(isinstance(v, (int, float, Decimal, np.integer, np.floating)) and not isinstance(v, (bool, np.bool_)) for v in items):
        return ColumnKind.FLOAT
    return ColumnKind.STR


def _cast(arr: np.ndarray, kind: ColumnKind, *, label: str) -> np.ndarray:
    if kind is ColumnKind.STR:
        return np.asarray([v if isinstance(v, str) else category_key(v) for v in arr.tolist()], dtype=object)
    if arr.dtype.kind in {"i", "u", "f", "b"}:
        return arr.astype(_DTYPES[kind])

    out = np.empty(arr.shape[0], dtype=_DTYPES[kind])
    for i, raw in enumerate(arr.tolist()):
        if raw is None:
            if kind is not ColumnKind.FLOAT:
                raise PlotDataError(f"{label} contains a missing value at index {i}")
            out[i] = np.nan
            continue
        if isinstance(raw, Decimal):
            raw = float(raw)
        try:
            out[i] = raw
        except (TypeError, ValueError) as exc:
            raise PlotDataError(f"{label} contains non-{kind.value} value at index {i}: {raw!r}") from exc
    return out
