from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any

from grammarplot.errors import InvalidConfiguration
from grammarplot.visuals import dash_pattern, parse_color, parse_shape


@dataclass(frozen=True)
class BuildSettings:
    """Defaults used when a layer leaves a visual or layout knob unmapped."""

    axis_breaks: int = 5
    legend_breaks: int = 4
    expand: float = 0.05
    bar_width: float = 0.9
    point_size: float = 3.0
    point_shape: str = "circle"
    line_width: float = 1.0
    linetype: str = "solid"
    color: str = "#000000"
    fill: str = "#595959"
    alpha: float = 1.0
    text_size: float = 11.0
    density_points: int = 512
    smooth_points: int = 80


DEFAULT_SETTINGS = BuildSettings()

_POSITIVE_INTS = ("axis_breaks", "legend_breaks", "density_points", "smooth_points")
_POSITIVE_FLOATS = ("bar_width", "point_size", "line_width", "text_size")


def validate_settings(overrides: Mapping[str, Any] | None = None, *, base: BuildSettings = DEFAULT_SETTINGS) -> BuildSettings:
    """Validate and merge user overrides against `base`."""
    raw: dict[str, Any] = asdict(base)
    if overrides:
        for key, value in overrides.items():
            if key not in raw:
                raise InvalidConfiguration(f"unknown build setting: {key}")
            raw[key] = value

    for key in _POSITIVE_INTS:
        if isinstance(raw[key], bool) or not isinstance(raw[key], int) or raw[key] < 1:
            raise InvalidConfiguration(f"setting `{key}` must be a positive integer")
    for key in _POSITIVE_FLOATS:
        if isinstance(raw[key], bool) or not isinstance(raw[key], (int, float)) or float(raw[key]) <= 0:
            raise InvalidConfiguration(f"setting `{key}` must be a positive number")
    if not isinstance(raw["expand"], (int, float)) or float(raw["expand"]) < 0:
        raise InvalidConfiguration("setting `expand` must be a non-negative number")
    if not isinstance(raw["alpha"], (int, float)) or not 0.0 <= float(raw["alpha"]) <= 1.0:
        raise InvalidConfiguration("setting `alpha` must be in [0, 1]")
    parse_color(raw["color"])
    parse_color(raw["fill"])
    parse_shape(raw["point_shape"])
    dash_pattern(raw["linetype"])

    return BuildSettings(
        **{f.name: (float(raw[f.name]) if f.type == "float" else raw[f.name]) for f in fields(BuildSettings)}
    )


class SettingsChain:
    """Override layers queried most-specific-first, ending at the validated defaults."""

    def __init__(self, *overrides: Mapping[str, Any] | None, defaults: BuildSettings = DEFAULT_SETTINGS) -> None:
        self._layers: list[dict[str, Any]] = []
        for layer in overrides:
            if layer:
                validate_settings(layer, base=defaults)
                self._layers.append(dict(layer))
        self.defaults = defaults

    def child(self, overrides: Mapping[str, Any] | None) -> "SettingsChain":
        """A chain with `overrides` placed in front of this one."""
        return SettingsChain(overrides, *self._layers, defaults=self.defaults)

    def get(self, key: str) -> Any:
        for layer in self._layers:
            if key in layer:
                return layer[key]
        try:
            return getattr(self.defaults, key)
        except AttributeError as exc:
            raise InvalidConfiguration(f"unknown build setting: {key}") from exc

    def resolve(self) -> BuildSettings:
        merged: dict[str, Any] = {}
        for layer in reversed(self._layers):
            merged.update(layer)
        return validate_settings(merged, base=self.defaults)
