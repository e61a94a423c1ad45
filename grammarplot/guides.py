from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
import logging
from typing import Any, Literal

from grammarplot.aesthetics import Aesthetic, as_aesthetic
from grammarplot.errors import InvalidConfiguration
from grammarplot.scales import ContinuousScale, Scale, ScaleSet


LOGGER = logging.getLogger(__name__)

LegendPosition = Literal["right", "left", "top", "bottom", "inside"]
LegendDirection = Literal["vertical", "horizontal"]
AxisPosition = Literal["bottom", "top", "left", "right"]

_LEGEND_POSITIONS = {"right", "left", "top", "bottom", "inside"}
_DIRECTIONS = {"vertical", "horizontal"}


@dataclass(frozen=True)
class LegendEntry:
    label: str
    values: Mapping[Aesthetic, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LegendGuide:
    """User overrides for one legend; unset fields keep the derived value."""

    title: str | None = None
    entries: tuple[LegendEntry, ...] | None = None
    position: LegendPosition | None = None
    direction: LegendDirection | None = None
    ncol: int | None = None
    nrow: int | None = None
    n_breaks: int | None = None
    hide: bool = False

    def __post_init__(self) -> None:
        if self.position is not None and self.position not in _LEGEND_POSITIONS:
            raise InvalidConfiguration(f"unknown legend position: {self.position}")
        if self.direction is not None and self.direction not in _DIRECTIONS:
            raise InvalidConfiguration(f"unknown legend direction: {self.direction}")
        for key in ("ncol", "nrow", "n_breaks"):
            value = getattr(self, key)
            if value is not None and int(value) < 1:
                raise InvalidConfiguration(f"legend `{key}` must be >= 1")


@dataclass(frozen=True)
class Legend:
    title: str
    aesthetics: tuple[Aesthetic, ...]
    entries: tuple[LegendEntry, ...]
    continuous: bool = False
    position: LegendPosition = "right"
    direction: LegendDirection = "vertical"
    ncol: int | None = None
    nrow: int | None = None

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(e.label for e in self.entries)


def derive_legend(
    aesthetic: Aesthetic | str,
    scale: Scale,
    guide: LegendGuide | None = None,
    title: str | None = None,
    n_breaks: int = 4,
) -> Legend | None:
    """Legend for one non-positional scale, or None when hidden."""
    aesthetic = as_aesthetic(aesthetic)
    guide = guide or LegendGuide()
    if guide.hide:
        LOGGER.debug("legend for %s hidden", aesthetic.value)
        return None

    continuous = isinstance(scale, ContinuousScale)
    if guide.entries is not None:
        entries = tuple(guide.entries)
    elif continuous:
        n = guide.n_breaks or n_breaks
        breaks = scale.breaks(n, clamp=True)
        labels = scale.labels(n, clamp=True)
        entries = tuple(
            LegendEntry(label=label, values={aesthetic: scale.map_value(value)})
            for value, label in zip(breaks.tolist(), labels)
        )
    else:
        entries = tuple(
            LegendEntry(label=label, values={aesthetic: scale.map_value(value)})
            for value, label in zip(scale.breaks(), scale.labels())
        )

    return Legend(
        title=guide.title or title or scale.title or aesthetic.value,
        aesthetics=(aesthetic,),
        entries=entries,
        continuous=continuous,
        position=guide.position or "right",
        direction=guide.direction or "vertical",
        ncol=guide.ncol,
        nrow=guide.nrow,
    )


def merge_legends(legends: list[Legend]) -> list[Legend]:
    """Fold legends that share a title and labels into one multi-channel legend."""
    merged: list[Legend] = []
    index: dict[tuple[str, tuple[str, ...]], int] = {}
    for legend in legends:
        key = (legend.title, legend.labels)
        at = index.get(key)
        if at is None:
            index[key] = len(merged)
            merged.append(legend)
            continue
        base = merged[at]
        entries = tuple(
            LegendEntry(label=a.label, values={**a.values, **b.values})
            for a, b in zip(base.entries, legend.entries)
        )
        merged[at] = replace(base, aesthetics=base.aesthetics + legend.aesthetics, entries=entries)
        LOGGER.debug("merged legend %r across %s", legend.title, [a.value for a in merged[at].aesthetics])
    return merged


def derive_legends(
    scales: ScaleSet,
    guides: Mapping[Aesthetic, LegendGuide] | None = None,
    titles: Mapping[Aesthetic, str] | None = None,
    n_breaks: int = 4,
) -> list[Legend]:
    guides = guides or {}
    titles = titles or {}
    legends: list[Legend] = []
    for aesthetic, scale in scales.items():
        if aesthetic.is_positional:
            continue
        guide = guides.get(aesthetic)
        legend = derive_legend(aesthetic, scale, guide, titles.get(aesthetic), n_breaks)
        if legend is None or not legend.entries:
            continue
        legends.append(legend)
    return merge_legends(legends)


@dataclass(frozen=True)
class AxisGuide:
    title: str | None = None
    n_breaks: int | None = None
    position: AxisPosition | None = None
    hide: bool = False

    def __post_init__(self) -> None:
        if self.n_breaks is not None and int(self.n_breaks) < 1:
            raise InvalidConfiguration("axis `n_breaks` must be >= 1")
        if self.position is not None and self.position not in {"bottom", "top", "left", "right"}:
            raise InvalidConfiguration(f"unknown axis position: {self.position}")


@dataclass(frozen=True)
class Axis:
    aesthetic: Aesthetic
    title: str
    breaks: tuple[Any, ...]
    positions: tuple[float, ...]
    labels: tuple[str, ...]
    position: AxisPosition


def derive_axis(
    aesthetic: Aesthetic | str,
    scale: Scale,
    guide: AxisGuide | None = None,
    title: str | None = None,
    n_breaks: int = 5,
) -> Axis | None:
    aesthetic = as_aesthetic(aesthetic).family
    if not aesthetic.is_positional:
        raise InvalidConfiguration(f"axes need a positional aesthetic, got `{aesthetic.value}`")
    guide = guide or AxisGuide()
    if guide.hide:
        return None

    if isinstance(scale, ContinuousScale):
        n = guide.n_breaks or n_breaks
        values = scale.breaks(n)
        breaks: tuple[Any, ...] = tuple(values.tolist())
        positions = tuple(float(t) for t in scale.map_array(values).tolist())
        labels = tuple(scale.labels(n))
    else:
        breaks = tuple(scale.breaks())
        positions = tuple(scale.map_category(b) for b in breaks)
        labels = tuple(scale.labels())

    default_position: AxisPosition = "bottom" if aesthetic is Aesthetic.X else "left"
    return Axis(
        aesthetic=aesthetic,
        title=guide.title or title or scale.title or aesthetic.value,
        breaks=breaks,
        positions=positions,
        labels=labels,
        position=guide.position or default_position,
    )
