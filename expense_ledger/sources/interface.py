"""
Transaction Source Interfaces

Each upstream system (mail inbox, banking API, bill-splitting service) is
reached through one of these interfaces. Implementations own the wire
format and authentication; they hand the ingestion pipeline records in
the normalized shapes from expense_ledger.models.sources.

Sources may return records the ledger already holds. Filtering by
idempotency key is the pipeline's job.
"""

from abc import ABC, abstractmethod

from expense_ledger.models.sources import (
    BankTransaction,
    EmailMessage,
    SplitwiseExpense,
    SplitwiseMovement,
)


class EmailSource(ABC):
    """Bank notification emails."""

    @abstractmethod
    async def fetch_messages(self) -> list[EmailMessage]:
        pass


class BankingSource(ABC):
    """Transactions from a banking API."""

    @abstractmethod
    async def fetch_transactions(self) -> list[BankTransaction]:
        pass


class SplitwiseSource(ABC):
    """Expenses recorded in the bill-splitting service, from the user's side."""

    @abstractmethod
    async def fetch_movements(self) -> list[SplitwiseMovement]:
        pass


class SplitwisePublisher(ABC):
    """Creates expenses in the bill-splitting service."""

    @abstractmethod
    async def create_expense(self, expense: SplitwiseExpense) -> str:
        """
        Create the expense.

        Returns:
            The id the service assigned to it
        """
        pass
