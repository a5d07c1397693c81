"""Run reporting models."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class StageReport(BaseModel):
    """
    Outcome of one pipeline stage.

    A stage that raised is reported with `error` set; the counts then
    cover whatever finished before the failure.
    """

    stage: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    succeeded: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    error: Optional[str] = None
    details: dict[str, int] = Field(default_factory=dict)

    @property
    def aborted(self) -> bool:
        return self.error is not None

    def summary(self) -> str:
        text = (
            f"{self.stage}: {self.succeeded} succeeded, "
            f"{self.skipped} skipped, {self.failed} failed"
        )
        if self.error:
            text += f" (aborted: {self.error})"
        return text


class RepairReport(BaseModel):
    """Result of a currency repair pass."""

    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
