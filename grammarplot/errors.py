from __future__ import annotations

from typing import Any


class PlotDataError(ValueError):
    """Base error for everything a plot build can reject."""


class AestheticDomainMismatch(PlotDataError):
    def __init__(self, aesthetic: Any, expected: str, actual: str) -> None:
        self.aesthetic = str(getattr(aesthetic, "value", aesthetic))
        self.expected = expected
        self.actual = actual
        super().__init__(f"aesthetic `{self.aesthetic}` expects {expected} data, got {actual}")


class MissingColumn(PlotDataError):
    def __init__(self, column: str, available: tuple[str, ...] = ()) -> None:
        self.column = column
        self.available = tuple(available)
        detail = f" (available: {', '.join(self.available)})" if self.available else ""
        super().__init__(f"column not found: {column}{detail}")


class InvalidConfiguration(PlotDataError):
    pass
