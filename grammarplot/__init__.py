from grammarplot.aesthetics import AesMap, Aesthetic, ColumnRef, Constant, VectorValue, aes
from grammarplot.data import Column, ColumnKind, DataStore
from grammarplot.errors import AestheticDomainMismatch, InvalidConfiguration, MissingColumn, PlotDataError
from grammarplot.geometry import GeomKind
from grammarplot.guides import AxisGuide, LegendEntry, LegendGuide, derive_axis, derive_legend
from grammarplot.layer import Layer, LayerOutput
from grammarplot.plot import BuiltPlot, Plot
from grammarplot.positions import Dodge, IdentityPosition, Stack, apply_position
from grammarplot.scales import (
    AlphaScale,
    CategoricalScale,
    ColorGradientScale,
    ContinuousScale,
    DiscreteColorScale,
    LinetypeScale,
    ScaleSet,
    ShapeScale,
    SizeScale,
    extended_breaks,
    format_breaks,
)
from grammarplot.settings import BuildSettings, validate_settings
from grammarplot.stats import Bin, Boxplot, Count, Density, Identity, Smooth, Summary, apply_stat

__all__ = [
    "AesMap",
    "Aesthetic",
    "AestheticDomainMismatch",
    "AlphaScale",
    "AxisGuide",
    "Bin",
    "Boxplot",
    "BuildSettings",
    "BuiltPlot",
    "CategoricalScale",
    "ColorGradientScale",
    "Column",
    "ColumnKind",
    "ColumnRef",
    "Constant",
    "ContinuousScale",
    "Count",
    "DataStore",
    "Density",
    "DiscreteColorScale",
    "Dodge",
    "GeomKind",
    "Identity",
    "IdentityPosition",
    "InvalidConfiguration",
    "Layer",
    "LayerOutput",
    "LegendEntry",
    "LegendGuide",
    "LinetypeScale",
    "MissingColumn",
    "Plot",
    "PlotDataError",
    "ScaleSet",
    "ShapeScale",
    "SizeScale",
    "Smooth",
    "Stack",
    "Summary",
    "VectorValue",
    "aes",
    "apply_position",
    "apply_stat",
    "derive_axis",
    "derive_legend",
    "extended_breaks",
    "format_breaks",
    "validate_settings",
]
