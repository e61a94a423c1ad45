from __future__ import annotations

import unittest

import numpy as np

from grammarplot import (
    Aesthetic,
    AxisGuide,
    CategoricalScale,
    ColorGradientScale,
    ContinuousScale,
    DataStore,
    DiscreteColorScale,
    InvalidConfiguration,
    LegendEntry,
    LegendGuide,
    ScaleSet,
    aes,
    derive_axis,
    derive_legend,
)
from grammarplot.guides import derive_legends


def _color_scale() -> DiscreteColorScale:
    scale = DiscreteColorScale(Aesthetic.COLOR)
    scale.train_values(["C", "A", "B"])
    return scale


class LegendTests(unittest.TestCase):
    def test_categorical_legend_entries(self) -> None:
        legend = derive_legend("color", _color_scale(), title="species")
        assert legend is not None
        self.assertEqual(legend.title, "species")
        self.assertEqual(legend.labels, ("A", "B", "C"))
        colors = {e.values[Aesthetic.COLOR] for e in legend.entries}
        self.assertEqual(len(colors), 3)
        self.assertFalse(legend.continuous)

    def test_continuous_legend_uses_breaks_inside_limits(self) -> None:
        scale = ColorGradientScale(Aesthetic.FILL)
        scale.train_values(np.asarray([0.0, 10.0]))
        legend = derive_legend(Aesthetic.FILL, scale)
        assert legend is not None
        self.assertTrue(legend.continuous)
        self.assertEqual(legend.labels, ("0", "2", "5", "8", "10"))
        self.assertEqual(legend.title, "fill")

    def test_explicit_entries_replace_derived(self) -> None:
        entries = (LegendEntry("only", {Aesthetic.COLOR: (1, 2, 3, 255)}),)
        legend = derive_legend("color", _color_scale(), LegendGuide(entries=entries))
        assert legend is not None
        self.assertEqual(legend.entries, entries)

    def test_partial_override_merges(self) -> None:
        guide = LegendGuide(title="Species", position="bottom", direction="horizontal", ncol=3)
        legend = derive_legend("color", _color_scale(), guide, title="species")
        assert legend is not None
        self.assertEqual(legend.title, "Species")
        self.assertEqual(legend.position, "bottom")
        self.assertEqual(legend.direction, "horizontal")
        self.assertEqual(legend.ncol, 3)
        self.assertEqual(len(legend.entries), 3)

    def test_hidden_legend(self) -> None:
        self.assertIsNone(derive_legend("color", _color_scale(), LegendGuide(hide=True)))

    def test_invalid_guide(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            LegendGuide(position="middle")
        with self.assertRaises(InvalidConfiguration):
            LegendGuide(ncol=0)

    def test_legends_with_same_title_and_labels_merge(self) -> None:
        store = DataStore.from_dict({"g": ["a", "b", "a"]})
        scales = ScaleSet()
        scales.train([(store, aes(color="g", shape="g"))])
        legends = derive_legends(scales, titles={Aesthetic.COLOR: "g", Aesthetic.SHAPE: "g"})
        self.assertEqual(len(legends), 1)
        self.assertEqual(legends[0].aesthetics, (Aesthetic.COLOR, Aesthetic.SHAPE))
        self.assertEqual(set(legends[0].entries[0].values), {Aesthetic.COLOR, Aesthetic.SHAPE})

    def test_legends_with_different_titles_stay_apart(self) -> None:
        store = DataStore.from_dict({"g": ["a", "b"], "h": ["a", "b"]})
        scales = ScaleSet()
        scales.train([(store, aes(color="g", shape="h"))])
        legends = derive_legends(scales, titles={Aesthetic.COLOR: "g", Aesthetic.SHAPE: "h"})
        self.assertEqual(len(legends), 2)


class AxisTests(unittest.TestCase):
    def test_continuous_axis(self) -> None:
        scale = ContinuousScale(Aesthetic.X, expand=0.05)
        scale.train_values(np.asarray([0.0, 10.0]))
        axis = derive_axis("x", scale, title="value")
        assert axis is not None
        self.assertEqual(axis.labels, ("0", "2", "5", "8", "10"))
        self.assertEqual(axis.position, "bottom")
        self.assertEqual(axis.title, "value")
        self.assertEqual(list(axis.positions), sorted(axis.positions))
        self.assertTrue(all(0.0 < p < 1.0 for p in axis.positions))

    def test_categorical_axis(self) -> None:
        scale = CategoricalScale(Aesthetic.Y)
        scale.train_values(["b", "a"])
        axis = derive_axis("y", scale)
        assert axis is not None
        self.assertEqual(axis.labels, ("a", "b"))
        self.assertEqual(axis.positions, (0.25, 0.75))
        self.assertEqual(axis.position, "left")

    def test_axis_guide_overrides(self) -> None:
        scale = ContinuousScale(Aesthetic.Y)
        scale.train_values(np.asarray([0.0, 100.0]))
        axis = derive_axis("y", scale, AxisGuide(title="Count", position="right"))
        assert axis is not None
        self.assertEqual(axis.title, "Count")
        self.assertEqual(axis.position, "right")
        self.assertIsNone(derive_axis("y", scale, AxisGuide(hide=True)))

    def test_axis_needs_positional_aesthetic(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            derive_axis("color", _color_scale())


if __name__ == "__main__":
    unittest.main()
