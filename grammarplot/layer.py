from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from grammarplot.aesthetics import AesMap
from grammarplot.data import DataStore
from grammarplot.geometry import GeomKind, Primitive
from grammarplot.positions import Position
from grammarplot.stats import Stat, StatOutput


@dataclass(frozen=True)
class Layer:
    """One geometric layer; `stat`/`position` of None use the geometry defaults."""

    geom: GeomKind
    mapping: AesMap = field(default_factory=AesMap)
    data: DataStore | None = None
    stat: Stat | None = None
    position: Position | None = None
    inherit_aes: bool = True
    settings: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "geom", GeomKind(self.geom))


@dataclass(frozen=True)
class LayerOutput:
    """Everything one build computed for a layer, stage by stage."""

    layer: Layer
    data: DataStore
    mapping: AesMap
    stat: StatOutput
    position: StatOutput
    primitives: tuple[Primitive, ...] = ()

    @property
    def outliers(self) -> DataStore | None:
        return self.position.outliers
