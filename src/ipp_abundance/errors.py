"""
Errors raised while partitioning, reindexing and aggregating cells.
"""
from __future__ import annotations

from typing import Any, Iterable


class PartitionError(ValueError):
    """Raised when a cell-to-unit partition is not usable for aggregation."""


class UnassignedCellError(PartitionError):
    """Raised when one or more cells have no reporting unit."""

    def __init__(self, cell_ids: Iterable[Any]) -> None:
        self.cell_ids = list(cell_ids)
        preview = self.cell_ids[:10]
        more = "" if len(self.cell_ids) <= 10 else f" (+{len(self.cell_ids) - 10} more)"
        super().__init__(
            f"{len(self.cell_ids)} cell(s) are not assigned to any unit: {preview}{more}"
        )


class EmptyUnitError(PartitionError):
    """Raised when a declared reporting unit owns no cells."""

    def __init__(self, unit_ids: Iterable[Any]) -> None:
        self.unit_ids = list(unit_ids)
        super().__init__(f"Unit(s) with no member cells: {self.unit_ids}")


class UnknownUnitError(PartitionError):
    """Raised when cells reference units outside the declared unit set."""

    def __init__(self, unit_ids: Iterable[Any]) -> None:
        self.unit_ids = list(unit_ids)
        super().__init__(f"Cells reference undeclared unit(s): {self.unit_ids}")


class MissingCellError(PartitionError):
    """Raised when a partition refers to cells absent from the cell table."""

    def __init__(self, cell_ids: Iterable[Any]) -> None:
        self.cell_ids = list(cell_ids)
        super().__init__(
            f"{len(self.cell_ids)} assigned cell(s) are missing from the cell table: {self.cell_ids[:10]}"
        )


class IntervalError(PartitionError):
    """Raised when a unit interval table does not tile 1..N."""


class NonPositiveRateError(ValueError):
    """Raised when a unit's summed rate cannot be log-transformed."""

    def __init__(self, unit_id: Any, total: float) -> None:
        self.unit_id = unit_id
        self.total = total
        super().__init__(
            f"Summed rate for unit {unit_id!r} is {total}; log of a non-positive rate is undefined"
        )
