"""
In-Memory Storage Implementation

Behaves like a worksheet read through gspread: cells are stored and
returned as strings, rows are addressed by 1-based sheet row numbers and
the header occupies row 1. Used by tests and dry runs.
"""

from typing import Optional

from expense_ledger.services.storage.interface import StorageError, TabularStore
from expense_ledger.services.storage.movement_rows import MOVEMENT_COLUMNS


class InMemoryTable(TabularStore):
    """A headered table kept in a list of string rows."""

    def __init__(
        self,
        rows: Optional[list[list]] = None,
        headers: Optional[list[str]] = None,
    ):
        self.headers = list(headers or MOVEMENT_COLUMNS)
        self._rows: list[list[str]] = [self._to_cells(row) for row in rows or []]

    @staticmethod
    def _to_cells(row: list) -> list[str]:
        return ["" if value is None else str(value) for value in row]

    @property
    def rows(self) -> list[list[str]]:
        """Snapshot of the data rows."""
        return [list(row) for row in self._rows]

    def read_rows(self) -> list[list[str]]:
        return self.rows

    def append_row(self, row: list) -> None:
        self._rows.append(self._to_cells(row))

    def update_cells(self, row_number: int, values: dict[int, object]) -> None:
        index = row_number - 2
        if index < 0 or index >= len(self._rows):
            raise StorageError(f"Row {row_number} is outside the table")

        row = self._rows[index]
        for col_number, value in values.items():
            if col_number < 1:
                raise StorageError(f"Invalid column {col_number}")
            # Sheets grow short rows on write
            while len(row) < col_number:
                row.append("")
            row[col_number - 1] = "" if value is None else str(value)
