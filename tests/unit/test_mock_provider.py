"""Unit tests for the deterministic sample provider."""

from decimal import Decimal

import pytest

from invoice_recon.extraction.mock_provider import (
    MOCK_MODEL_NAME,
    SAMPLE_INVOICE,
    MockExtractionProvider,
)
from invoice_recon.extraction.schema import DocumentImage
from invoice_recon.shared.config import Settings


@pytest.fixture
def provider() -> MockExtractionProvider:
    return MockExtractionProvider(Settings(_env_file=None))


class TestMockInvoiceAnalysis:
    """Test the sample invoice."""

    def test_same_invoice_for_any_file(self, provider: MockExtractionProvider) -> None:
        """Every call should return the same invoice with confidence 0.95."""
        first = provider.analyze_invoice(DocumentImage(content=b"a", filename="one.png"))
        second = provider.analyze_invoice(DocumentImage(content=b"b", filename="two.png"))

        assert first.invoice == second.invoice
        assert first.confidence == 0.95
        assert second.confidence == 0.95

    def test_sample_is_internally_consistent(self, provider: MockExtractionProvider) -> None:
        """Line totals should add up to the subtotal and subtotal + tax to the total."""
        invoice = provider.analyze_invoice(DocumentImage(content=b"a", filename="x.png")).invoice

        assert sum(line.total_price for line in invoice.line_items) == invoice.subtotal
        assert invoice.subtotal + invoice.tax_amount == invoice.total_amount
        assert invoice.tax_amount == Decimal("222.50")

    def test_returns_independent_copies(self, provider: MockExtractionProvider) -> None:
        """Mutating a returned invoice should not change the sample."""
        analysis = provider.analyze_invoice(DocumentImage(content=b"a", filename="x.png"))
        analysis.invoice.line_items.clear()

        assert len(SAMPLE_INVOICE.line_items) == 4

    def test_metadata(self, provider: MockExtractionProvider) -> None:
        """Metadata should name the mock provider and carry no rationale."""
        analysis = provider.analyze_invoice(DocumentImage(content=b"a", filename="x.png"))

        assert analysis.metadata.provider == "mock"
        assert analysis.metadata.ai_model == MOCK_MODEL_NAME
        assert analysis.metadata.rationale is None


class TestMockContractAnalysis:
    """Test the sample contract."""

    def test_sample_contract(self, provider: MockExtractionProvider) -> None:
        """Should return vendor data and the sample terms."""
        analysis = provider.analyze_contract(DocumentImage(content=b"a", filename="c.png"))

        assert analysis.vendor.name == "Sysco Food Services"
        assert analysis.terms.payment_terms == "Net 30"
        assert analysis.terms.tax_rate == Decimal("0.085")
        assert analysis.confidence == 0.92

    def test_is_always_available(self, provider: MockExtractionProvider) -> None:
        assert provider.is_available() is True
