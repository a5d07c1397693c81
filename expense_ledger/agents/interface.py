"""
AI Collaborator Interfaces

CRITICAL: Implementations return RAW output. Nothing an implementation
returns is trusted; the flows pass it through the validators in
expense_ledger.models.classification before touching the ledger.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from expense_ledger.models.classification import ClassificationRequest
from expense_ledger.models.movement import Movement
from expense_ledger.models.sources import EmailMessage


class ClassifierError(Exception):
    """The AI service could not be reached or returned nothing usable."""
    pass


class MovementClassifier(ABC):
    """Categorizes movements and parses bank notification emails."""

    @abstractmethod
    async def classify(self, request: ClassificationRequest) -> Any:
        """
        Classify one movement.

        Returns:
            The raw decoded result (normally a dict), or None

        Raises:
            ClassifierError: On transport failure
        """
        pass

    @abstractmethod
    async def parse_email(self, email: EmailMessage) -> Any:
        """
        Extract a transaction from a bank notification email.

        Returns:
            The raw decoded result (normally a dict with amount, currency,
            source_description, timestamp and transaction_type), or None

        Raises:
            ClassifierError: On transport failure
        """
        pass


class RepaymentMatcher(ABC):
    """Picks the pending debit a repayment most likely settles."""

    @abstractmethod
    async def match(
        self,
        repayment: Movement,
        candidates: list[Movement],
    ) -> Optional[int]:
        """
        Returns:
            The id of one candidate, or None for "no match"

        Raises:
            ClassifierError: On transport failure
        """
        pass
