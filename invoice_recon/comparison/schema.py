"""Comparison result models: discrepancies and compliance checklist."""

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DiscrepancyType(str, Enum):
    PRICE = "price"
    QUANTITY = "quantity"
    TAX = "tax"
    TERMS = "terms"
    DISCOUNT = "discount"
    OTHER = "other"


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Ordering helper: low=1, medium=2, high=3."""
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class CheckCategory(str, Enum):
    """Compliance checks run against every invoice, in checklist order."""

    LINE_ITEM_MATCH = "line_item_match"
    PRICE = "price"
    QUANTITY = "quantity"
    DISCOUNT = "discount"
    TAX = "tax"
    PAYMENT_TERMS = "payment_terms"
    CONTRACT_PERIOD = "contract_period"
    ARITHMETIC = "arithmetic"


class Discrepancy(BaseModel):
    """One detected mismatch between an invoice and its contract terms.

    Attributes:
        field: Dotted path into the extracted invoice (line_items[0].unit_price)
        financial_impact: Signed amount, positive means the vendor overcharged
        confidence: Extraction confidence of the fields this finding reads
    """

    model_config = ConfigDict(frozen=True)

    type: DiscrepancyType
    severity: Severity
    field: str
    expected: Any = None
    actual: Any = None
    financial_impact: Decimal = Decimal("0.00")
    confidence: float = Field(..., ge=0, le=1)
    description: str
    recommendation: str = ""


class ChecklistItem(BaseModel):
    """Outcome of one compliance rule."""

    model_config = ConfigDict(frozen=True)

    category: CheckCategory
    item: str
    passed: bool
    details: str
    confidence: float = Field(..., ge=0, le=1)


class ComparisonResult(BaseModel):
    """Discrepancies and checklist for one invoice against one term set."""

    model_config = ConfigDict(frozen=True)

    discrepancies: list[Discrepancy] = Field(default_factory=list)
    checklist: list[ChecklistItem] = Field(default_factory=list)

    @property
    def has_discrepancies(self) -> bool:
        return bool(self.discrepancies)

    @property
    def total_discrepancy_amount(self) -> Decimal:
        """Overcharge exposure; undercharges never offset overcharges."""
        return sum(
            (max(Decimal("0"), d.financial_impact) for d in self.discrepancies),
            Decimal("0.00"),
        )

    @property
    def highest_severity(self) -> Severity | None:
        if not self.discrepancies:
            return None
        return max((d.severity for d in self.discrepancies), key=lambda s: s.rank)
