from __future__ import annotations

from decimal import Decimal
import unittest

import numpy as np

from grammarplot import AestheticDomainMismatch, Column, ColumnKind, DataStore, MissingColumn, PlotDataError
from grammarplot.data import category_key


class ColumnTests(unittest.TestCase):
    def test_kind_inference(self) -> None:
        self.assertIs(Column.from_values("a", [1, 2, 3]).kind, ColumnKind.INT)
        self.assertIs(Column.from_values("a", [1.5, 2]).kind, ColumnKind.FLOAT)
        self.assertIs(Column.from_values("a", [True, False]).kind, ColumnKind.BOOL)
        self.assertIs(Column.from_values("a", ["x", "y"]).kind, ColumnKind.STR)
        self.assertIs(Column.from_values("a", np.arange(3, dtype=np.float32)).kind, ColumnKind.FLOAT)

    def test_none_in_numeric_becomes_nan(self) -> None:
        col = Column.from_values("a", [1.0, None, 3.0])
        self.assertIs(col.kind, ColumnKind.FLOAT)
        self.assertTrue(np.isnan(col.values[1]))

    def test_int_with_missing_value_promotes_to_float(self) -> None:
        col = Column.from_values("a", [1, None, 3])
        self.assertIs(col.kind, ColumnKind.FLOAT)

    def test_decimal_values_are_coerced(self) -> None:
        col = Column.from_values("a", [Decimal("1.25"), Decimal("2.5")])
        np.testing.assert_allclose(col.values, [1.25, 2.5])

    def test_values_are_read_only(self) -> None:
        col = Column.from_values("a", [1.0, 2.0])
        with self.assertRaises(ValueError):
            col.values[0] = 5.0

    def test_as_float_rejects_discrete(self) -> None:
        col = Column.from_values("species", ["a", "b"])
        with self.assertRaises(AestheticDomainMismatch) as ctx:
            col.as_float("x")
        self.assertEqual(ctx.exception.aesthetic, "x")
        self.assertIn("discrete", ctx.exception.actual)

    def test_category_keys_are_uniform(self) -> None:
        self.assertEqual(Column.from_values("a", [1.0, 2.5]).category_keys(), ["1", "2.5"])
        self.assertEqual(Column.from_values("a", [True, False]).category_keys(), ["true", "false"])
        self.assertEqual(category_key(3), "3")

    def test_take_and_rename(self) -> None:
        col = Column.from_values("a", [10, 20, 30]).take([2, 0]).renamed("b")
        self.assertEqual(col.name, "b")
        self.assertEqual(col.values.tolist(), [30, 10])

    def test_repeat(self) -> None:
        col = Column.repeat("c", "red", 3)
        self.assertIs(col.kind, ColumnKind.STR)
        self.assertEqual(len(col), 3)


class DataStoreTests(unittest.TestCase):
    def test_from_dict_preserves_order(self) -> None:
        store = DataStore.from_dict({"b": [1, 2], "a": ["x", "y"]})
        self.assertEqual(store.column_names, ("b", "a"))
        self.assertEqual(store.nrows, 2)

    def test_length_mismatch_fails_fast(self) -> None:
        with self.assertRaises(PlotDataError):
            DataStore.from_dict({"a": [1, 2], "b": [1, 2, 3]})
        store = DataStore.from_dict({"a": [1, 2]})
        with self.assertRaises(PlotDataError):
            store.with_column(Column.from_values("b", [1.0]))

    def test_missing_column(self) -> None:
        store = DataStore.from_dict({"a": [1]})
        self.assertIsNone(store.get("b"))
        with self.assertRaises(MissingColumn) as ctx:
            store.column("b")
        self.assertIn("column not found: b", str(ctx.exception))

    def test_with_column_returns_new_store(self) -> None:
        store = DataStore.from_dict({"a": [1, 2]})
        out = store.with_column(Column.from_values("b", [3, 4]))
        self.assertNotIn("b", store)
        self.assertIn("b", out)

    def test_replacing_a_column_keeps_position(self) -> None:
        store = DataStore.from_dict({"a": [1, 2], "b": [3, 4]})
        out = store.with_column(Column.from_values("a", [9, 9]))
        self.assertEqual(out.column_names, ("a", "b"))
        self.assertEqual(out.column("a").values.tolist(), [9, 9])

    def test_concat_promotes_int_and_float(self) -> None:
        a = DataStore.from_dict({"v": [1, 2]})
        b = DataStore.from_dict({"v": [0.5]})
        out = DataStore.concat([a, b])
        self.assertIs(out.column("v").kind, ColumnKind.FLOAT)
        self.assertEqual(out.column("v").values.tolist(), [1.0, 2.0, 0.5])

    def test_concat_rejects_different_columns(self) -> None:
        with self.assertRaises(PlotDataError):
            DataStore.concat([DataStore.from_dict({"a": [1]}), DataStore.from_dict({"b": [1]})])

    def test_take_and_without(self) -> None:
        store = DataStore.from_dict({"a": [1, 2, 3], "b": ["x", "y", "z"]})
        out = store.take([1]).without("a")
        self.assertEqual(out.to_dict(), {"b": ["y"]})

    def test_empty_column_is_float(self) -> None:
        store = DataStore.from_dict({"v": []})
        self.assertEqual(store.nrows, 0)
        self.assertIs(store.column("v").kind, ColumnKind.FLOAT)


if __name__ == "__main__":
    unittest.main()
