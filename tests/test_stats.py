from __future__ import annotations

import unittest

import numpy as np

from grammarplot import (
    Aesthetic,
    AestheticDomainMismatch,
    Bin,
    Boxplot,
    Count,
    DataStore,
    Density,
    Identity,
    InvalidConfiguration,
    Smooth,
    Summary,
    aes,
    apply_stat,
)
from grammarplot.grouping import GROUP_COLUMN


def _rows_for_rank(out, rank: int) -> np.ndarray:
    return np.flatnonzero(out.data.column(GROUP_COLUMN).values == rank)


class IdentityStatTests(unittest.TestCase):
    def test_pass_through_adds_group(self) -> None:
        store = DataStore.from_dict({"x": [1, 2, 3], "g": ["b", "a", "b"]})
        out = apply_stat(Identity(), store, aes(x="x", fill="g"))
        self.assertEqual(out.data.column("x").values.tolist(), [1, 2, 3])
        self.assertEqual(out.data.column(GROUP_COLUMN).values.tolist(), [1, 0, 1])
        self.assertEqual(out.groups, (("a",), ("b",)))


class BinTests(unittest.TestCase):
    def test_four_bins_of_width_one(self) -> None:
        store = DataStore.from_dict({"v": [0.5, 0.5, 1.5, 1.5, 2.5, 2.5, 3.5, 3.5]})
        out = apply_stat(Bin(bins=4, limits=(0.0, 4.0)), store, aes(x="v"))
        data = out.data
        self.assertEqual(data.nrows, 4)
        np.testing.assert_allclose(data.column("xmax").values - data.column("xmin").values, 1.0)
        self.assertEqual(data.column("count").values.tolist(), [2, 2, 2, 2])
        np.testing.assert_allclose(data.column("density").values, 0.25)
        self.assertEqual(out.mapping.column_name(Aesthetic.Y), "count")
        self.assertEqual(out.mapping.column_name(Aesthetic.YMIN), "ymin")

    def test_edges_shared_across_groups(self) -> None:
        store = DataStore.from_dict({"v": [0.0, 1.0, 2.0, 5.0, 9.0, 10.0], "g": ["a", "a", "a", "b", "b", "b"]})
        out = apply_stat(Bin(bins=5), store, aes(x="v", fill="g"))
        a = _rows_for_rank(out, 0)
        b = _rows_for_rank(out, 1)
        xmin = out.data.column("xmin").values
        np.testing.assert_array_equal(xmin[a], xmin[b])
        self.assertEqual(out.data.column("g").values[a].tolist(), ["a"] * 5)
        self.assertEqual(int(out.data.column("count").values[a].sum()), 3)

    def test_last_bin_is_closed(self) -> None:
        store = DataStore.from_dict({"v": [0.5, 1.5, 2.5, 3.5, 3.5]})
        out = apply_stat(Bin(bins=3), store, aes(x="v"))
        self.assertEqual(out.data.column("count").values.tolist(), [1, 1, 3])

    def test_binwidth_wins_over_bins(self) -> None:
        store = DataStore.from_dict({"v": [0.0, 2.0]})
        out = apply_stat(Bin(bins=3, binwidth=0.5), store, aes(x="v"))
        self.assertEqual(out.data.nrows, 4)
        np.testing.assert_allclose(out.data.column("xmax").values - out.data.column("xmin").values, 0.5)

    def test_values_outside_limits_are_dropped(self) -> None:
        store = DataStore.from_dict({"v": [-1.0, 0.5, 5.0]})
        out = apply_stat(Bin(bins=4, limits=(0.0, 4.0)), store, aes(x="v"))
        self.assertEqual(int(out.data.column("count").values.sum()), 1)

    def test_cumulative(self) -> None:
        store = DataStore.from_dict({"v": [0.5, 1.5, 2.5, 3.5]})
        out = apply_stat(Bin(bins=4, limits=(0.0, 4.0), cumulative=True), store, aes(x="v"))
        self.assertEqual(out.data.column("count").values.tolist(), [1, 2, 3, 4])

    def test_degenerate_range_is_widened(self) -> None:
        store = DataStore.from_dict({"v": [2.0, 2.0, 2.0]})
        out = apply_stat(Bin(bins=1), store, aes(x="v"))
        self.assertEqual(out.data.column("xmin").values.tolist(), [1.5])
        self.assertEqual(out.data.column("xmax").values.tolist(), [2.5])
        self.assertEqual(out.data.column("count").values.tolist(), [3])

    def test_invalid_configuration(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            Bin(bins=0)
        with self.assertRaises(InvalidConfiguration):
            Bin(binwidth=-1.0)
        with self.assertRaises(InvalidConfiguration):
            Bin(binwidth=float("inf"))

    def test_discrete_x_is_rejected(self) -> None:
        store = DataStore.from_dict({"v": ["a", "b"]})
        with self.assertRaises(AestheticDomainMismatch):
            apply_stat(Bin(), store, aes(x="v"))

    def test_missing_required_aesthetic(self) -> None:
        store = DataStore.from_dict({"v": [1.0]})
        with self.assertRaises(InvalidConfiguration):
            apply_stat(Bin(), store, aes(y="v"))

    def test_empty_input_gives_empty_output(self) -> None:
        store = DataStore.from_dict({"v": []})
        out = apply_stat(Bin(), store, aes(x="v"))
        self.assertEqual(out.data.nrows, 0)
        self.assertIn("count", out.data)


class CountTests(unittest.TestCase):
    def test_counts_and_proportions(self) -> None:
        store = DataStore.from_dict({"c": ["b", "a", "b"]})
        out = apply_stat(Count(), store, aes(x="c"))
        self.assertEqual(out.data.column("x").values.tolist(), ["a", "b"])
        self.assertEqual(out.data.column("count").values.tolist(), [1, 2])
        np.testing.assert_allclose(out.data.column("prop").values, [1 / 3, 2 / 3])


class DensityTests(unittest.TestCase):
    def test_scott_bandwidth(self) -> None:
        values = np.asarray([1.0, 2.0, 3.0, 4.0, 5.0])
        expected = np.std(values, ddof=1) * 5 ** -0.2
        self.assertAlmostEqual(Density().bandwidth(values), expected)
        self.assertAlmostEqual(Density(adjust=2.0).bandwidth(values), 2 * expected)

    def test_density_integrates_to_one(self) -> None:
        store = DataStore.from_dict({"v": [1.0, 2.0, 2.5, 3.0, 4.0, 7.0]})
        out = apply_stat(Density(), store, aes(x="v"))
        x = out.data.column("x").values
        y = out.data.column("density").values
        self.assertEqual(x.size, 512)
        self.assertAlmostEqual(float(np.sum(y) * (x[1] - x[0])), 1.0, delta=0.02)
        self.assertAlmostEqual(float(out.data.column("scaled").values.max()), 1.0)

    def test_groups_share_grid(self) -> None:
        store = DataStore.from_dict({"v": [0.0, 1.0, 2.0, 10.0, 11.0, 13.0], "g": ["a", "a", "a", "b", "b", "b"]})
        out = apply_stat(Density(n=64), store, aes(x="v", fill="g"))
        x = out.data.column("x").values
        np.testing.assert_array_equal(x[_rows_for_rank(out, 0)], x[_rows_for_rank(out, 1)])

    def test_single_value_group_fails(self) -> None:
        store = DataStore.from_dict({"v": [1.0, 2.0, 5.0], "g": ["a", "a", "b"]})
        with self.assertRaises(InvalidConfiguration):
            apply_stat(Density(), store, aes(x="v", fill="g"))

    def test_invalid_adjust(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            Density(adjust=0.0)


class SmoothTests(unittest.TestCase):
    def test_linear_fit_recovers_line(self) -> None:
        xs = np.arange(10, dtype=np.float64)
        store = DataStore.from_dict({"x": xs, "y": 2 * xs + 1})
        out = apply_stat(Smooth(n=10), store, aes(x="x", y="y"))
        np.testing.assert_allclose(out.data.column("y").values, 2 * out.data.column("x").values + 1)
        np.testing.assert_allclose(out.data.column("se").values, 0.0, atol=1e-9)

    def test_confidence_band_brackets_fit(self) -> None:
        xs = np.arange(12, dtype=np.float64)
        noise = np.where(np.arange(12) % 2 == 0, 1.0, -1.0)
        store = DataStore.from_dict({"x": xs, "y": 2 * xs + noise})
        out = apply_stat(Smooth(n=20), store, aes(x="x", y="y"))
        y = out.data.column("y").values
        self.assertTrue(np.all(out.data.column("ymin").values < y))
        self.assertTrue(np.all(out.data.column("ymax").values > y))
        self.assertEqual(out.mapping.column_name(Aesthetic.YMIN), "ymin")

    def test_spline_averages_duplicate_x(self) -> None:
        store = DataStore.from_dict({"x": [0.0, 1.0, 1.0, 2.0], "y": [0.0, 1.0, 3.0, 4.0]})
        out = apply_stat(Smooth(method="spline", n=3), store, aes(x="x", y="y"))
        np.testing.assert_allclose(out.data.column("y").values, [0.0, 2.0, 4.0], atol=1e-9)
        self.assertNotIn("ymin", out.data)

    def test_loess_on_linear_data(self) -> None:
        xs = np.arange(20, dtype=np.float64)
        store = DataStore.from_dict({"x": xs, "y": 3 * xs})
        out = apply_stat(Smooth(method="loess", n=5), store, aes(x="x", y="y"))
        np.testing.assert_allclose(out.data.column("y").values, 3 * out.data.column("x").values, atol=1e-6)

    def test_invalid_method(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            Smooth(method="cubic")
        with self.assertRaises(InvalidConfiguration):
            Smooth(level=1.5)


class SummaryTests(unittest.TestCase):
    def test_one_row_per_group(self) -> None:
        store = DataStore.from_dict({"x": [1.0, 2.0, 3.0], "y": [1.0, 2.0, 6.0]})
        out = apply_stat(Summary(fun="mean"), store, aes(x="x", y="y"))
        self.assertEqual(out.data.nrows, len(out.groups))
        self.assertEqual(out.data.column("y").values.tolist(), [3.0])
        self.assertNotIn("x", out.data)
        self.assertNotIn(Aesthetic.X, out.mapping)

    def test_each_group_reduced_once(self) -> None:
        store = DataStore.from_dict({"x": [1.0, 2.0, 3.0, 4.0], "y": [1.0, 3.0, 5.0, 7.0], "g": ["a", "a", "b", "b"]})
        out = apply_stat(Summary(fun="mean"), store, aes(x="x", y="y", color="g"))
        self.assertEqual(out.data.nrows, 2)
        self.assertEqual(out.data.column("y").values.tolist(), [2.0, 6.0])
        self.assertEqual(out.data.column("g").values.tolist(), ["a", "b"])

    def test_constant_x_is_kept_with_range(self) -> None:
        store = DataStore.from_dict({"x": ["a", "a", "b"], "y": [1.0, 3.0, 5.0]})
        stat = Summary(fun="mean", fun_min="min", fun_max="max")
        out = apply_stat(stat, store, aes(x="x", y="y", group="x"))
        self.assertEqual(out.data.column("x").values.tolist(), ["a", "b"])
        self.assertEqual(out.data.column("y").values.tolist(), [2.0, 5.0])
        self.assertEqual(out.data.column("ymin").values.tolist(), [1.0, 5.0])
        self.assertEqual(out.data.column("ymax").values.tolist(), [3.0, 5.0])
        self.assertEqual(out.mapping.column_name(Aesthetic.X), "x")

    def test_median(self) -> None:
        store = DataStore.from_dict({"x": [1, 1, 1], "y": [1.0, 2.0, 10.0]})
        out = apply_stat(Summary(fun="median"), store, aes(x="x", y="y"))
        self.assertEqual(out.data.column("y").values.tolist(), [2.0])

    def test_unknown_reducer(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            Summary(fun="mode")


class BoxplotTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = DataStore.from_dict(
            {
                "grp": ["A"] * 5 + ["B"] * 6,
                "y": [1.0, 2.0, 3.0, 4.0, 5.0, 10.0, 11.0, 12.0, 13.0, 14.0, 30.0],
            }
        )

    def test_summary_and_outliers(self) -> None:
        out = apply_stat(Boxplot(), self.store, aes(x="grp", y="y"))
        data = out.data
        self.assertEqual(data.column("x").values.tolist(), ["A", "B"])
        self.assertEqual(data.column("lower").values.tolist(), [2.0, 11.25])
        self.assertEqual(data.column("middle").values.tolist(), [3.0, 12.5])
        self.assertEqual(data.column("upper").values.tolist(), [4.0, 13.75])
        self.assertEqual(data.column("ymin").values.tolist(), [1.0, 10.0])
        self.assertEqual(data.column("ymax").values.tolist(), [5.0, 14.0])
        self.assertEqual(data.column("n").values.tolist(), [5, 6])
        assert out.outliers is not None
        self.assertEqual(out.outliers.column("x").values.tolist(), ["B"])
        self.assertEqual(out.outliers.column("y").values.tolist(), [30.0])
        self.assertNotIn(Aesthetic.Y, out.mapping)

    def test_no_outliers_when_inside_fences(self) -> None:
        box = Boxplot().summarize(np.asarray([1.0, 2.0, 3.0, 4.0, 5.0]))
        self.assertEqual(box.outliers.size, 0)
        self.assertEqual(box.iqr, 2.0)

    def test_discrete_y_is_rejected(self) -> None:
        with self.assertRaises(AestheticDomainMismatch):
            apply_stat(Boxplot(), self.store, aes(x="y", y="grp"))


if __name__ == "__main__":
    unittest.main()
