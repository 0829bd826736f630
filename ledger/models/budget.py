"""
Budget Models

A budget reserves money for a tag over a cycle window. Recurring budgets
follow the cycle of a tagged master rule; ad-hoc budgets cover the span
between their creation and a single future transaction.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BudgetType(str, Enum):
    """Budget origin."""
    RECURRING = "recurring"
    AD_HOC = "ad-hoc"


class BudgetStatus(str, Enum):
    """Budget lifecycle status."""
    ACTIVE = "active"
    CLOSED = "closed"


class Budget(BaseModel):
    """
    A spending reservation for one tag over [startDate, endDate].

    Values are positive amounts; spent and reserved are derived from the
    ledger by `recompute_budget`.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        frozen=True,
        extra="ignore",
    )

    id: str = Field(..., min_length=1)
    tag: str = Field(..., min_length=1, max_length=80)
    budget_type: BudgetType = Field(default=BudgetType.AD_HOC, alias="budgetType")
    status: BudgetStatus = BudgetStatus.ACTIVE

    start_date: date = Field(..., alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")

    initial_value: Decimal = Field(default=Decimal("0"), ge=0, alias="initialValue")
    spent_value: Decimal = Field(default=Decimal("0"), ge=0, alias="spentValue")
    reserved_value: Decimal = Field(default=Decimal("0"), ge=0, alias="reservedValue")

    recurrence_id: Optional[str] = Field(default=None, alias="recurrenceId")
    trigger_tx_id: Optional[str] = Field(default=None, alias="triggerTxId")
    trigger_tx_iso: Optional[date] = Field(default=None, alias="triggerTxIso")
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")

    @field_validator("id", "recurrence_id", "trigger_tx_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v))
        return v

    @field_validator("tag", mode="before")
    @classmethod
    def strip_hash(cls, v: Any) -> Any:
        """Tags are stored without the leading '#'."""
        if isinstance(v, str):
            return v.strip().lstrip("#")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "Budget":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("endDate cannot be before startDate")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == BudgetStatus.ACTIVE

    def to_storage_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
