from __future__ import annotations

import unittest

import numpy as np

from grammarplot import AesMap, Aesthetic, ColumnRef, Constant, DataStore, InvalidConfiguration, MissingColumn, VectorValue, aes
from grammarplot.aesthetics import as_aesthetic
from grammarplot.errors import PlotDataError
from grammarplot.grouping import GROUP_COLUMN, materialize_vectors, split_by_value, split_groups


class AesMapTests(unittest.TestCase):
    def test_value_kinds(self) -> None:
        mapping = aes(x="a", color="red", size=3, y=[1, 2])
        self.assertEqual(mapping.get("x"), ColumnRef("a"))
        # Plain strings are always column references.
        self.assertEqual(mapping.get("color"), ColumnRef("red"))
        self.assertEqual(mapping.get("size"), Constant(3))
        self.assertIsInstance(mapping.get("y"), VectorValue)

    def test_aliases_and_unknown_keys(self) -> None:
        self.assertIs(as_aesthetic("colour"), Aesthetic.COLOR)
        with self.assertRaises(InvalidConfiguration):
            aes(wobble="a")

    def test_layer_overrides_plot_key_by_key(self) -> None:
        plot = aes(x="a", y="b")
        layer = aes(y="c", color="d")
        merged = layer.inherit(plot)
        self.assertEqual(merged.column_name("x"), "a")
        self.assertEqual(merged.column_name("y"), "c")
        self.assertEqual(merged.column_name("color"), "d")

    def test_resolve(self) -> None:
        store = DataStore.from_dict({"a": [1, 2, 3]})
        mapping = AesMap({"x": ColumnRef("a"), "size": Constant(2.0), "y": VectorValue.of([4, 5, 6])})
        self.assertEqual(mapping.resolve("x", store).values.tolist(), [1, 2, 3])
        self.assertEqual(mapping.resolve("size", store).values.tolist(), [2.0, 2.0, 2.0])
        self.assertEqual(mapping.resolve("y", store).values.tolist(), [4, 5, 6])
        self.assertIsNone(mapping.resolve("fill", store))

    def test_vector_length_must_match(self) -> None:
        store = DataStore.from_dict({"a": [1, 2, 3]})
        with self.assertRaises(PlotDataError):
            aes(y=[1, 2]).resolve("y", store)

    def test_validate_reports_missing_column(self) -> None:
        store = DataStore.from_dict({"a": [1]})
        with self.assertRaises(MissingColumn):
            aes(x="nope").validate(store)

    def test_positional_families(self) -> None:
        self.assertIs(Aesthetic.YMAX.family, Aesthetic.Y)
        self.assertIs(Aesthetic.XINTERCEPT.family, Aesthetic.X)
        self.assertIs(Aesthetic.FILL.family, Aesthetic.FILL)
        self.assertTrue(Aesthetic.LOWER.is_y_like)


class GroupingTests(unittest.TestCase):
    def test_discrete_grouping_sorted_by_key(self) -> None:
        store = DataStore.from_dict({"v": [1, 2, 3, 4], "g": ["b", "a", "b", "c"]})
        groups = split_groups(store, aes(x="v", color="g"))
        self.assertEqual([g.key for g in groups], [("a",), ("b",), ("c",)])
        self.assertEqual([g.rank for g in groups], [0, 1, 2])
        self.assertEqual(groups[1].indices.tolist(), [0, 2])

    def test_numeric_color_does_not_group(self) -> None:
        store = DataStore.from_dict({"v": [1, 2, 3], "w": [0.1, 0.2, 0.3]})
        groups = split_groups(store, aes(x="v", color="w"))
        self.assertEqual(len(groups), 1)

    def test_composite_key(self) -> None:
        store = DataStore.from_dict({"c": ["a", "a", "b"], "s": ["x", "y", "x"]})
        groups = split_groups(store, aes(color="c", shape="s"))
        self.assertEqual([g.key for g in groups], [("a", "x"), ("a", "y"), ("b", "x")])

    def test_explicit_group_wins(self) -> None:
        store = DataStore.from_dict({"c": ["a", "b", "a"], "grp": [1, 1, 2]})
        groups = split_groups(store, aes(color="c", group="grp"))
        self.assertEqual([g.key for g in groups], [("1",), ("2",)])

    def test_constants_and_missing_columns_form_single_group(self) -> None:
        store = DataStore.from_dict({"v": [1, 2]})
        mapping = AesMap({"x": "v", "color": Constant("red")})
        self.assertEqual(len(split_groups(store, mapping)), 1)

    def test_materialize_vectors(self) -> None:
        store = DataStore.from_dict({"v": [1, 2]})
        data, mapping = materialize_vectors(store, aes(x="v", y=[3.0, 4.0]))
        name = mapping.column_name("y")
        self.assertIsNotNone(name)
        self.assertEqual(data.column(name).values.tolist(), [3.0, 4.0])

    def test_split_by_value_orders_values(self) -> None:
        store = DataStore.from_dict({"x": [3.0, 1.0, 3.0, 2.0]})
        parts = split_by_value(store.column("x"), np.arange(4))
        self.assertEqual([p.tolist() for p in parts], [[1], [3], [0, 2]])

    def test_group_column_name_is_reserved(self) -> None:
        self.assertTrue(GROUP_COLUMN.startswith("."))


if __name__ == "__main__":
    unittest.main()
