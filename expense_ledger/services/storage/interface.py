"""
Abstract Storage Interface

DESIGN DECISION: The ledger is built on a plain tabular resource, not on a
database. The interface is the three operations a spreadsheet offers:
read every data row, append a row, and overwrite individual cells.
This allows us to:
1. Use Google Sheets, where the user can read and edit the ledger
2. Use an in-memory table for testing
3. Keep ledger logic decoupled from cell addressing

There are no secondary indexes. Every lookup scans current state.
"""

from abc import ABC, abstractmethod

from expense_ledger.models.audit import AuditEvent


class TabularStore(ABC):
    """
    Abstract interface for a headered table of string cells.

    Row numbers are 1-based sheet rows. Row 1 is the header, so the first
    data row is row 2. Column numbers are 1-based as well.
    """

    @abstractmethod
    def read_rows(self) -> list[list[str]]:
        """
        Read every data row (header excluded), in sheet order.

        Returns:
            One list of cell strings per row. Rows may be shorter than
            the header when trailing cells are empty.

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    def append_row(self, row: list) -> None:
        """
        Append a row after the last data row.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def update_cells(self, row_number: int, values: dict[int, object]) -> None:
        """
        Overwrite cells of one row.

        Args:
            row_number: 1-based sheet row (data starts at 2)
            values: {1-based column number: new value}

        Raises:
            StorageError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateIdError(StorageError):
    """Attempted to insert a movement whose id already exists."""
    pass


class InvalidSettlementReferenceError(StorageError):
    """
    A settlement reference would break the one-way reference rules.

    Raised when the target is not a debit/credit movement, or when the
    repayment already points at a different movement.
    """
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
