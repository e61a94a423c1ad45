from __future__ import annotations

import colorsys
from collections.abc import Sequence
from enum import Enum
import re
from typing import Any

import numpy as np

from grammarplot.errors import InvalidConfiguration


RGBA = tuple[int, int, int, int]

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}([0-9a-fA-F]{2})?$")

NAMED_COLORS: dict[str, RGBA] = {
    "black": (0, 0, 0, 255),
    "white": (255, 255, 255, 255),
    "gray": (128, 128, 128, 255),
    "grey": (128, 128, 128, 255),
    "red": (255, 0, 0, 255),
    "green": (0, 128, 0, 255),
    "blue": (0, 0, 255, 255),
    "orange": (255, 165, 0, 255),
    "purple": (128, 0, 128, 255),
    "steelblue": (70, 130, 180, 255),
    "transparent": (0, 0, 0, 0),
}

# Okabe & Ito colorblind-safe qualitative palette.
OKABE_ITO: tuple[RGBA, ...] = (
    (0, 114, 178, 255),
    (213, 94, 0, 255),
    (0, 158, 115, 255),
    (230, 159, 0, 255),
    (86, 180, 233, 255),
    (240, 228, 66, 255),
    (0, 0, 0, 255),
    (204, 121, 167, 255),
)

DEFAULT_GRADIENT: tuple[RGBA, ...] = ((19, 43, 67, 255), (86, 177, 247, 255))


def parse_color(value: Any) -> RGBA:
    """Accept `#RRGGBB`, `#RRGGBBAA`, a known name, or an RGB(A) tuple of 0-255 ints."""
    if isinstance(value, str):
        named = NAMED_COLORS.get(value.strip().lower())
        if named is not None:
            return named
        if not _HEX_COLOR.match(value):
            raise InvalidConfiguration(f"color must be a hex color (#RRGGBB or #RRGGBBAA) or a name, got {value!r}")
        raw = value[1:]
        channels = [int(raw[i : i + 2], 16) for i in range(0, len(raw), 2)]
        if len(channels) == 3:
            channels.append(255)
        return (channels[0], channels[1], channels[2], channels[3])
    if isinstance(value, (tuple, list)) and len(value) in {3, 4}:
        try:
            channels = [int(c) for c in value]
        except (TypeError, ValueError) as exc:
            raise InvalidConfiguration(f"color channels must be integers, got {value!r}") from exc
        if any(c < 0 or c > 255 for c in channels):
            raise InvalidConfiguration(f"color channels must be in [0, 255], got {value!r}")
        if len(channels) == 3:
            channels.append(255)
        return (channels[0], channels[1], channels[2], channels[3])
    raise InvalidConfiguration(f"unsupported color value: {value!r}")


def with_alpha(color: RGBA, alpha: float) -> RGBA:
    a = int(round(float(np.clip(alpha, 0.0, 1.0)) * 255))
    return (color[0], color[1], color[2], a)


def to_hex(color: RGBA) -> str:
    r, g, b, a = color
    if a == 255:
        return f"#{r:02x}{g:02x}{b:02x}"
    return f"#{r:02x}{g:02x}{b:02x}{a:02x}"


def hue_palette(n: int, *, saturation: float = 0.65, value: float = 0.85) -> list[RGBA]:
    """`n` colors spaced evenly around the hue wheel."""
    out: list[RGBA] = []
    for i in range(max(0, n)):
        r, g, b = colorsys.hsv_to_rgb((15.0 + 360.0 * i / n) % 360.0 / 360.0, saturation, value)
        out.append((int(round(r * 255)), int(round(g * 255)), int(round(b * 255)), 255))
    return out


def discrete_palette(n: int) -> list[RGBA]:
    if n <= len(OKABE_ITO):
        return list(OKABE_ITO[:n])
    return hue_palette(n)


def interpolate_colors(anchors: Sequence[RGBA], t: float) -> RGBA:
    """Piecewise-linear interpolation between anchors spread evenly over [0, 1]."""
    if len(anchors) < 2:
        raise InvalidConfiguration("a color gradient needs at least 2 anchors")
    t = float(np.clip(t, 0.0, 1.0))
    segments = len(anchors) - 1
    pos = t * segments
    i = min(int(pos), segments - 1)
    frac = pos - i
    lo, hi = anchors[i], anchors[i + 1]
    return tuple(int(round(a + (b - a) * frac)) for a, b in zip(lo, hi))  # type: ignore[return-value]


class Shape(str, Enum):
    CIRCLE = "circle"
    SQUARE = "square"
    TRIANGLE = "triangle"
    DIAMOND = "diamond"
    CROSS = "cross"
    PLUS = "plus"


SHAPE_CYCLE: tuple[Shape, ...] = tuple(Shape)


def parse_shape(value: Any) -> Shape:
    if isinstance(value, Shape):
        return value
    try:
        return Shape(str(value).lower())
    except ValueError as exc:
        raise InvalidConfiguration(f"unknown point shape: {value!r}") from exc


# On/off lengths in stroke-width units; empty means a solid stroke.
LINETYPES: dict[str, tuple[float, ...]] = {
    "solid": (),
    "dashed": (6.0, 4.0),
    "dotted": (1.0, 3.0),
    "dotdash": (1.0, 3.0, 6.0, 3.0),
    "longdash": (12.0, 4.0),
    "twodash": (3.0, 3.0, 9.0, 3.0),
}

LINETYPE_CYCLE: tuple[str, ...] = tuple(LINETYPES)


def dash_pattern(value: Any) -> tuple[float, ...]:
    if isinstance(value, str):
        try:
            return LINETYPES[value.lower()]
        except KeyError as exc:
            raise InvalidConfiguration(f"unknown linetype: {value!r}") from exc
    if isinstance(value, (tuple, list)):
        pattern = tuple(float(v) for v in value)
        if len(pattern) % 2 or any(v <= 0 for v in pattern):
            raise InvalidConfiguration(f"dash pattern needs an even number of positive lengths, got {value!r}")
        return pattern
    raise InvalidConfiguration(f"unsupported linetype value: {value!r}")
