"""Deterministic sample provider for development and tests.

Returns the same realistic invoice and contract for every document so the
comparison, report and job layers run without network access or model
variance. Selected by APP_EXTRACTION_MODE=mock.
"""

import logging
import time
from datetime import date
from decimal import Decimal

from invoice_recon.extraction.base import ExtractionProvider
from invoice_recon.extraction.schema import (
    ContractAnalysis,
    ContractTermSet,
    DiscountTerm,
    DocumentImage,
    ExtractedInvoice,
    ExtractionMetadata,
    InvoiceAnalysis,
    LineItem,
    PricingTerm,
    VendorData,
)

logger = logging.getLogger(__name__)

MOCK_MODEL_NAME = "mock-vision-v1"

SAMPLE_INVOICE = ExtractedInvoice(
    invoice_number="INV-2024-001234",
    vendor_name="Sysco Food Services",
    invoice_date="2024-11-09",
    due_date="2024-12-09",
    subtotal=Decimal("2625.00"),
    tax_amount=Decimal("222.50"),
    total_amount=Decimal("2847.50"),
    payment_terms="Net 30 Days",
    vendor_address="123 Industrial Blvd, Columbus, OH 43215",
    currency="USD",
    line_items=[
        LineItem(
            description="Fresh Vegetables - Mixed Cases",
            quantity=Decimal("15"),
            unit_price=Decimal("45.50"),
            total_price=Decimal("682.50"),
            unit="case",
        ),
        LineItem(
            description="Protein - Ground Beef (80/20)",
            quantity=Decimal("8"),
            unit_price=Decimal("125.75"),
            total_price=Decimal("1006.00"),
            unit="case",
        ),
        LineItem(
            description="Dairy - Milk 2% Gallon Cases",
            quantity=Decimal("12"),
            unit_price=Decimal("35.25"),
            total_price=Decimal("423.00"),
            unit="case",
        ),
        LineItem(
            description="Bread - Whole Wheat Loaves",
            quantity=Decimal("130"),
            unit_price=Decimal("3.95"),
            total_price=Decimal("513.50"),
            unit="loaf",
        ),
    ],
    extraction_confidence=0.95,
    field_confidence={"line_items[1].quantity": 0.88},
)

SAMPLE_VENDOR = VendorData(
    name="Sysco Food Services",
    dba_name="Sysco",
    category="Food & Beverage",
    address="123 Industrial Blvd, Columbus, OH 43215",
    contact_email="accounts@sysco.example.com",
)

SAMPLE_TERMS = ContractTermSet(
    id="contract-terms-sample",
    payment_terms="Net 30",
    pricing=[
        PricingTerm(item="Fresh Vegetables", unit_price=Decimal("42.00"), unit="case"),
        PricingTerm(
            item="Ground Beef",
            unit_price=Decimal("125.75"),
            unit="case",
            min_order_qty=Decimal("10"),
        ),
        PricingTerm(item="Milk 2% Gallon", unit_price=Decimal("35.25"), unit="case"),
        PricingTerm(item="Whole Wheat Bread", unit_price=Decimal("3.95"), unit="loaf"),
    ],
    discounts=[
        DiscountTerm(
            threshold_amount=Decimal("5000.00"),
            discount_pct=Decimal("3"),
            conditions="Orders above $5,000 before tax",
        )
    ],
    tax_rate=Decimal("0.085"),
    effective_date=date(2024, 1, 1),
    expiration_date=date(2025, 12, 31),
)


class MockExtractionProvider(ExtractionProvider):
    """Returns fixed sample analyses without calling any service."""

    @property
    def provider_name(self) -> str:
        return "mock"

    @property
    def model_name(self) -> str:
        return MOCK_MODEL_NAME

    def is_available(self) -> bool:
        return True

    def analyze_invoice(
        self, image: DocumentImage, contract_terms: ContractTermSet | None = None
    ) -> InvoiceAnalysis:
        start = time.perf_counter()
        logger.debug(f"Returning sample invoice analysis for {image.filename}")
        return InvoiceAnalysis(
            invoice=SAMPLE_INVOICE.model_copy(deep=True),
            metadata=ExtractionMetadata(
                ai_model=self.model_name,
                provider=self.provider_name,
                processing_time_seconds=time.perf_counter() - start,
            ),
        )

    def analyze_contract(self, image: DocumentImage) -> ContractAnalysis:
        start = time.perf_counter()
        logger.debug(f"Returning sample contract analysis for {image.filename}")
        return ContractAnalysis(
            vendor=SAMPLE_VENDOR.model_copy(deep=True),
            terms=SAMPLE_TERMS,
            confidence=0.92,
            metadata=ExtractionMetadata(
                ai_model=self.model_name,
                provider=self.provider_name,
                processing_time_seconds=time.perf_counter() - start,
            ),
        )
