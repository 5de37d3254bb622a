"""Invoice and contract data models for structured extraction.

Amounts are Decimal; confidences are floats in [0, 1].
"""

import base64
import uuid
from datetime import date
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DocumentImage(BaseModel):
    """A document page image submitted for analysis."""

    content: bytes = Field(..., description="Raw image bytes")
    filename: str = Field(..., description="Original filename")
    content_type: str = Field("image/png", description="MIME type of the image")

    def to_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.content_type};base64,{self.to_base64()}"


class PricingTerm(BaseModel):
    """Contracted unit price for one item."""

    model_config = ConfigDict(frozen=True)

    item: str = Field(..., description="Item description as written in the contract")
    unit_price: Decimal = Field(..., description="Contracted price per unit", ge=0)
    unit: str = Field("each", description="Unit of measure")
    min_order_qty: Decimal | None = Field(None, description="Minimum order quantity", ge=0)
    max_order_qty: Decimal | None = Field(None, description="Maximum order quantity", ge=0)


class DiscountTerm(BaseModel):
    """Volume discount unlocked once an order subtotal crosses a threshold."""

    model_config = ConfigDict(frozen=True)

    threshold_amount: Decimal = Field(
        ..., description="Order subtotal that unlocks the discount", ge=0
    )
    discount_pct: Decimal = Field(..., description="Discount in percent (5 = 5%)", ge=0, le=100)
    conditions: str = Field("", description="Free-text conditions")


class ContractTermSet(BaseModel):
    """Governing terms for a vendor contract at a point in time.

    Immutable: re-analysis of a contract produces a new version instead of
    mutating one a report may already reference.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    vendor_id: str | None = None
    version: int = Field(1, ge=1)
    payment_terms: str = Field(..., description="Payment terms, e.g. 'Net 30'")
    pricing: list[PricingTerm] = Field(default_factory=list)
    discounts: list[DiscountTerm] = Field(default_factory=list)
    tax_rate: Decimal = Field(Decimal("0"), description="Tax rate as a fraction (0.085)", ge=0)
    effective_date: date
    expiration_date: date | None = None

    @field_validator("tax_rate", mode="before")
    @classmethod
    def normalize_percent_tax_rate(cls, value: object) -> object:
        """Accept percentages such as 8.5 and store them as 0.085."""
        if value is None:
            return Decimal("0")
        try:
            rate = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"tax_rate is not a number: {value!r}") from e
        if not rate.is_finite():
            raise ValueError(f"tax_rate is not a finite number: {value!r}")
        if rate > 1:
            return rate / Decimal("100")
        return rate

    @model_validator(mode="after")
    def check_date_window(self) -> "ContractTermSet":
        if self.expiration_date is not None and self.effective_date > self.expiration_date:
            raise ValueError("effective_date must not be after expiration_date")
        return self


class LineItem(BaseModel):
    """One invoiced line."""

    description: str
    quantity: Decimal = Field(..., ge=0)
    unit_price: Decimal
    total_price: Decimal
    unit: str | None = None


class ExtractedInvoice(BaseModel):
    """Structured invoice data extracted from a document."""

    invoice_number: str
    vendor_name: str
    invoice_date: str = Field(..., description="Invoice date (YYYY-MM-DD)")
    due_date: str | None = None
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    line_items: list[LineItem] = Field(default_factory=list)
    payment_terms: str | None = None
    vendor_address: str | None = None
    currency: str = "USD"
    extraction_confidence: float = Field(..., ge=0, le=1)
    field_confidence: dict[str, float] = Field(
        default_factory=dict,
        description="Per-field confidence keyed by dotted path (line_items[0].unit_price)",
    )

    @field_validator("field_confidence")
    @classmethod
    def check_field_confidence_range(cls, value: dict[str, float]) -> dict[str, float]:
        for path, confidence in value.items():
            if not 0 <= confidence <= 1:
                raise ValueError(f"confidence for {path} must be within [0, 1]")
        return value

    def confidence_for(self, *paths: str) -> float:
        """Lowest confidence among the given field paths.

        Fields without their own score inherit the overall extraction confidence.
        """
        if not paths:
            return self.extraction_confidence
        return min(self.field_confidence.get(path, self.extraction_confidence) for path in paths)

    def issued_on(self) -> date | None:
        try:
            return date.fromisoformat(self.invoice_date)
        except ValueError:
            return None


class VendorData(BaseModel):
    """Vendor details read from a contract."""

    name: str
    dba_name: str | None = None
    category: str | None = None
    address: str | None = None
    contact_email: str | None = None


class ExtractionMetadata(BaseModel):
    """How an extraction was produced."""

    ai_model: str
    provider: str
    processing_time_seconds: float = Field(0.0, ge=0)
    rationale: str | None = Field(
        None, description="Narrative the model produced in the same round trip"
    )


class InvoiceAnalysis(BaseModel):
    """Result of analyzing an invoice image."""

    invoice: ExtractedInvoice
    metadata: ExtractionMetadata

    @property
    def confidence(self) -> float:
        return self.invoice.extraction_confidence


class ContractAnalysis(BaseModel):
    """Result of analyzing a contract image."""

    vendor: VendorData
    terms: ContractTermSet
    confidence: float = Field(..., ge=0, le=1)
    metadata: ExtractionMetadata
