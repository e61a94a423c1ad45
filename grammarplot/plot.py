from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
from typing import Any

from grammarplot.aesthetics import AesMap, Aesthetic, as_aesthetic
from grammarplot.data import Column, DataStore
from grammarplot.errors import InvalidConfiguration
from grammarplot.geometry import GeomKind, check_required, default_position, default_stat, emit, setup_data
from grammarplot.guides import Axis, AxisGuide, Legend, LegendGuide, derive_axis, derive_legends
from grammarplot.layer import Layer, LayerOutput
from grammarplot.positions import Position, apply_position
from grammarplot.scales import Scale, ScaleSet
from grammarplot.settings import BuildSettings, SettingsChain, validate_settings
from grammarplot.stats import Stat, apply_stat


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuiltPlot:
    layers: tuple[LayerOutput, ...]
    scales: ScaleSet
    axes: Mapping[Aesthetic, Axis] = field(default_factory=dict)
    legends: tuple[Legend, ...] = ()
    title: str | None = None
    settings: BuildSettings = field(default_factory=BuildSettings)


def _as_store(data: DataStore | Mapping[str, Any] | None) -> DataStore | None:
    if data is None or isinstance(data, DataStore):
        return data
    return DataStore.from_dict(data)


def _as_mapping(mapping: AesMap | Mapping[str, Any] | None) -> AesMap:
    if mapping is None:
        return AesMap()
    if isinstance(mapping, AesMap):
        return mapping
    return AesMap(mapping)


class Plot:
    """Declarative plot: data, a default mapping, layers, and scale/guide overrides."""

    def __init__(
        self,
        data: DataStore | Mapping[str, Any] | None = None,
        mapping: AesMap | Mapping[str, Any] | None = None,
        *,
        settings: Mapping[str, Any] | None = None,
    ) -> None:
        self.data = _as_store(data)
        self.mapping = _as_mapping(mapping)
        self.settings = dict(settings or {})
        self.layers: list[Layer] = []
        self.title: str | None = None
        self._scales: dict[Aesthetic, Scale] = {}
        self._legend_guides: dict[Aesthetic, LegendGuide] = {}
        self._axis_guides: dict[Aesthetic, AxisGuide] = {}
        self._labels: dict[Aesthetic, str] = {}
        validate_settings(self.settings)

    def add(self, layer: Layer) -> "Plot":
        self.layers.append(layer)
        return self

    def layer(
        self,
        geom: GeomKind | str,
        mapping: AesMap | Mapping[str, Any] | None = None,
        *,
        data: DataStore | Mapping[str, Any] | None = None,
        stat: Stat | None = None,
        position: Position | None = None,
        inherit_aes: bool = True,
        **settings: Any,
    ) -> "Plot":
        try:
            kind = GeomKind(geom)
        except ValueError as exc:
            raise InvalidConfiguration(f"unknown geometry: {geom!r}") from exc
        return self.add(
            Layer(
                geom=kind,
                mapping=_as_mapping(mapping),
                data=_as_store(data),
                stat=stat,
                position=position,
                inherit_aes=inherit_aes,
                settings=settings or None,
            )
        )

    def scale(self, scale: Scale) -> "Plot":
        self._scales[scale.aesthetic.family] = scale
        return self

    def guide(self, aesthetic: Aesthetic | str, guide: LegendGuide | AxisGuide) -> "Plot":
        aesthetic = as_aesthetic(aesthetic).family
        if isinstance(guide, AxisGuide):
            if not aesthetic.is_positional:
                raise InvalidConfiguration(f"axis guides need a positional aesthetic, got `{aesthetic.value}`")
            self._axis_guides[aesthetic] = guide
        else:
            if aesthetic.is_positional:
                raise InvalidConfiguration(f"legend guides need a non-positional aesthetic, got `{aesthetic.value}`")
            self._legend_guides[aesthetic] = guide
        return self

    def labs(self, title: str | None = None, **aesthetics: str) -> "Plot":
        if title is not None:
            self.title = title
        for key, text in aesthetics.items():
            self._labels[as_aesthetic(key).family] = text
        return self

    def _titles(self, staged: list[tuple[Layer, AesMap, AesMap]]) -> dict[Aesthetic, str]:
        """User labels first, then scale titles, then the first column name seen per aesthetic family."""
        titles = dict(self._labels)
        named = {family for family, scale in self._scales.items() if scale.title is not None}
        for _, mapping, stat_mapping in staged:
            for source in (mapping, stat_mapping):
                for aesthetic, _ in source.items():
                    family = aesthetic.family
                    name = source.column_name(aesthetic)
                    if family in titles or family in named or name is None or name.startswith("."):
                        continue
                    if aesthetic.is_positional and aesthetic is not family and family in source:
                        continue
                    titles[family] = name
        return titles

    def build(self) -> BuiltPlot:
        if not self.layers:
            raise InvalidConfiguration("plot has no layers")
        chain = SettingsChain(self.settings)
        plot_settings = chain.resolve()
        LOGGER.debug("building plot with %d layer(s)", len(self.layers))

        staged = []
        for n, layer in enumerate(self.layers):
            data = layer.data if layer.data is not None else self.data
            if data is None:
                raise InvalidConfiguration(f"layer {n} ({layer.geom.value}) has no data")
            mapping = layer.mapping.inherit(self.mapping if layer.inherit_aes else None)
            check_required(layer.geom, mapping)
            mapping.validate(data)
            layer_settings = chain.child(layer.settings).resolve()

            stat_out = apply_stat(layer.stat or default_stat(layer.geom, layer_settings), data, mapping)
            prepared = setup_data(layer.geom, stat_out)
            position = layer.position or default_position(layer.geom, layer_settings)
            pos_out = apply_position(position, prepared)
            staged.append((layer, data, mapping, stat_out, pos_out, layer_settings))

        scales = ScaleSet(self._scales, expand=plot_settings.expand)
        extra: list[tuple[Aesthetic, Column]] = []
        for *_, pos_out, _ in staged:
            outliers = pos_out.outliers
            if outliers is not None and outliers.nrows and "y" in outliers:
                extra.append((Aesthetic.Y, outliers.column("y")))
        scales.train([(s[4].data, s[4].mapping) for s in staged], extra)

        outputs = []
        for layer, data, mapping, stat_out, pos_out, layer_settings in staged:
            primitives = emit(
                layer.geom, pos_out.data, pos_out.mapping, scales, layer_settings, outliers=pos_out.outliers
            )
            outputs.append(
                LayerOutput(
                    layer=layer,
                    data=data,
                    mapping=mapping,
                    stat=stat_out,
                    position=pos_out,
                    primitives=tuple(primitives),
                )
            )

        titles = self._titles([(s[0], s[2], s[3].mapping) for s in staged])
        axes: dict[Aesthetic, Axis] = {}
        for aesthetic in (Aesthetic.X, Aesthetic.Y):
            scale = scales.get(aesthetic)
            if scale is None:
                continue
            axis = derive_axis(
                aesthetic, scale, self._axis_guides.get(aesthetic), titles.get(aesthetic), plot_settings.axis_breaks
            )
            if axis is not None:
                axes[aesthetic] = axis
        legends = derive_legends(scales, self._legend_guides, titles, plot_settings.legend_breaks)
        LOGGER.debug("built plot: %d axes, %d legend(s)", len(axes), len(legends))
        return BuiltPlot(
            layers=tuple(outputs),
            scales=scales,
            axes=axes,
            legends=tuple(legends),
            title=self.title,
            settings=plot_settings,
        )
