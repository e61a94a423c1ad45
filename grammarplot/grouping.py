from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

from grammarplot.aesthetics import GROUPING_AESTHETICS, AesMap, Aesthetic, ColumnRef, VectorValue
from grammarplot.data import Column, ColumnKind, DataStore


LOGGER = logging.getLogger(__name__)

GROUP_COLUMN = ".group"
VECTOR_PREFIX = ".aes."

GroupKey = tuple[str, ...]


@dataclass(frozen=True)
class Group:
    key: GroupKey
    rank: int
    indices: np.ndarray


def materialize_vectors(data: DataStore, mapping: AesMap) -> tuple[DataStore, AesMap]:
    """Move precomputed vectors into the store so later stages only see columns."""
    columns: list[Column] = []
    updates: dict[Aesthetic, ColumnRef] = {}
    for aesthetic, value in mapping.items():
        if not isinstance(value, VectorValue):
            continue
        column = mapping.resolve(aesthetic, data)
        assert column is not None
        name = f"{VECTOR_PREFIX}{aesthetic.value}"
        columns.append(column.renamed(name))
        updates[aesthetic] = ColumnRef(name)
    if not columns:
        return data, mapping
    return data.with_columns(columns), mapping.updated(updates)


def grouping_columns(data: DataStore, mapping: AesMap) -> list[tuple[Aesthetic, str]]:
    """(aesthetic, column) pairs that define the composite group key, in key order."""
    group_name = mapping.column_name(Aesthetic.GROUP)
    if group_name is not None:
        if group_name in data:
            return [(Aesthetic.GROUP, group_name)]
        LOGGER.debug("group column %s not present; using a single group", group_name)
        return []

    out: list[tuple[Aesthetic, str]] = []
    for aesthetic in GROUPING_AESTHETICS:
        name = mapping.column_name(aesthetic)
        if name is None:
            continue
        column = data.get(name)
        if column is None:
            LOGGER.debug("grouping aesthetic %s unresolved; ignoring", aesthetic.value)
            continue
        if column.kind in {ColumnKind.STR, ColumnKind.BOOL}:
            out.append((aesthetic, name))
    return out


def group_keys(data: DataStore, columns: list[tuple[Aesthetic, str]]) -> list[GroupKey]:
    if not columns:
        return [()] * data.nrows
    parts = [data.column(name).category_keys() for _, name in columns]
    return list(zip(*parts))


def split_groups(data: DataStore, mapping: AesMap) -> list[Group]:
    """Split rows by composite key; groups are ordered by key, ties by first appearance."""
    keys = group_keys(data, grouping_columns(data, mapping))

    buckets: dict[GroupKey, list[int]] = {}
    for i, key in enumerate(keys):
        buckets.setdefault(key, []).append(i)

    ordered = sorted(buckets.items(), key=lambda item: item[0])
    return [
        Group(key=key, rank=rank, indices=np.asarray(idx, dtype=np.int64))
        for rank, (key, idx) in enumerate(ordered)
    ]


def split_by_value(column: Column, indices: np.ndarray) -> list[np.ndarray]:
    """Partition `indices` by the column's value, ordered by value."""
    buckets: dict[object, list[int]] = {}
    values = column.values
    for i in indices.tolist():
        raw = values[i]
        key = float(raw) if column.is_numeric else str(raw)
        buckets.setdefault(key, []).append(i)
    return [np.asarray(buckets[k], dtype=np.int64) for k in sorted(buckets)]


def carried_columns(data: DataStore, mapping: AesMap) -> list[str]:
    """Columns that stay constant within a group and must survive a stat."""
    names: list[str] = []
    for _, name in grouping_columns(data, mapping):
        if name not in names:
            names.append(name)
    return names


def group_ranks(data: DataStore) -> np.ndarray:
    column = data.get(GROUP_COLUMN)
    if column is None:
        return np.zeros(data.nrows, dtype=np.int64)
    return column.values.astype(np.int64, copy=False)
