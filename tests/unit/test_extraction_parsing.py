"""Unit tests for model response parsing."""

import json
from decimal import Decimal

import pytest

from invoice_recon.extraction.parsing import (
    extract_json_object,
    parse_contract_response,
    parse_invoice_response,
)
from invoice_recon.shared.errors import ExtractionParseError


def invoice_payload(**overrides: object) -> dict:
    payload = {
        "confidence": 0.9,
        "invoice": {
            "invoice_number": "INV-1",
            "vendor_name": "Acme Foods",
            "invoice_date": "2024-03-01",
            "subtotal": "100.00",
            "tax_amount": "8.50",
            "total_amount": "108.50",
            "payment_terms": "Net 30",
            "line_items": [
                {
                    "description": "Widget",
                    "quantity": 10,
                    "unit_price": "10.00",
                    "total_price": "100.00",
                }
            ],
        },
        "field_confidence": {"line_items[0].unit_price": 0.6},
        "rationale": "Prices look consistent with the contract.",
    }
    payload.update(overrides)
    return payload


def contract_payload(**overrides: object) -> dict:
    payload = {
        "confidence": 0.85,
        "vendor": {"name": "Acme Foods", "category": "Food"},
        "terms": {
            "payment_terms": "Net 45",
            "pricing": [{"item": "Widget", "unit_price": "9.50", "unit": "each"}],
            "discounts": [],
            "tax_rate": 8.5,
            "effective_date": "2024-01-01",
            "expiration_date": "2024-12-31",
        },
    }
    payload.update(overrides)
    return payload


class TestExtractJsonObject:
    """Test JSON object extraction from raw responses."""

    def test_plain_json(self) -> None:
        """Should parse a bare JSON object."""
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self) -> None:
        """Should strip a ```json fence."""
        assert extract_json_object('```json\n{"a": 1}\n```') == {"a": 1}

    def test_prose_around_object(self) -> None:
        """Should find the object inside surrounding prose."""
        assert extract_json_object('Here you go: {"a": 1} Hope this helps') == {"a": 1}

    def test_empty_response(self) -> None:
        """Should reject empty responses."""
        with pytest.raises(ExtractionParseError, match="Empty response"):
            extract_json_object("   ")

    def test_invalid_json(self) -> None:
        """Should reject text without valid JSON."""
        with pytest.raises(ExtractionParseError, match="not valid JSON"):
            extract_json_object("This is not valid JSON")

    def test_non_object_json(self) -> None:
        """Should reject JSON that is not an object."""
        with pytest.raises(ExtractionParseError, match="not an object"):
            extract_json_object("[1, 2, 3]")


class TestParseInvoiceResponse:
    """Test invoice response parsing."""

    def test_valid_response(self) -> None:
        """Should build a validated invoice with metadata."""
        analysis = parse_invoice_response(
            json.dumps(invoice_payload()),
            provider="openai",
            ai_model="gpt-4o",
            processing_time_seconds=1.5,
        )

        assert analysis.invoice.invoice_number == "INV-1"
        assert analysis.invoice.line_items[0].unit_price == Decimal("10.00")
        assert analysis.confidence == 0.9
        assert analysis.metadata.provider == "openai"
        assert analysis.metadata.ai_model == "gpt-4o"
        assert analysis.metadata.rationale == "Prices look consistent with the contract."

    def test_field_confidence_inherits_overall(self) -> None:
        """Fields without their own score should inherit the overall confidence."""
        analysis = parse_invoice_response(
            json.dumps(invoice_payload()), "openai", "gpt-4o", 0.1
        )

        assert analysis.invoice.confidence_for("line_items[0].unit_price") == 0.6
        assert analysis.invoice.confidence_for("tax_amount") == 0.9
        assert analysis.invoice.confidence_for("tax_amount", "line_items[0].unit_price") == 0.6

    def test_blank_rationale_is_dropped(self) -> None:
        """A blank rationale should be treated as absent."""
        analysis = parse_invoice_response(
            json.dumps(invoice_payload(rationale="  ")), "openai", "gpt-4o", 0.1
        )

        assert analysis.metadata.rationale is None

    def test_missing_confidence(self) -> None:
        """Should reject responses without a confidence."""
        payload = invoice_payload()
        del payload["confidence"]

        with pytest.raises(ExtractionParseError, match="confidence"):
            parse_invoice_response(json.dumps(payload), "openai", "gpt-4o", 0.1)

    def test_missing_invoice_field(self) -> None:
        """Should reject an invoice missing a required field."""
        payload = invoice_payload()
        del payload["invoice"]["total_amount"]

        with pytest.raises(ExtractionParseError, match="failed validation"):
            parse_invoice_response(json.dumps(payload), "openai", "gpt-4o", 0.1)

    def test_confidence_out_of_range(self) -> None:
        """Should reject a confidence above 1."""
        with pytest.raises(ExtractionParseError):
            parse_invoice_response(
                json.dumps(invoice_payload(confidence=1.7)), "openai", "gpt-4o", 0.1
            )

    def test_parse_error_is_not_retryable(self) -> None:
        """Parse errors should be flagged as permanent."""
        with pytest.raises(ExtractionParseError) as exc_info:
            parse_invoice_response("nonsense", "ollama", "llava", 0.1)

        assert exc_info.value.retryable is False


class TestParseContractResponse:
    """Test contract response parsing."""

    def test_valid_response(self) -> None:
        """Should build vendor data and a term set."""
        analysis = parse_contract_response(
            json.dumps(contract_payload()), "ollama", "llava", 2.0
        )

        assert analysis.vendor.name == "Acme Foods"
        assert analysis.terms.payment_terms == "Net 45"
        assert analysis.terms.pricing[0].unit_price == Decimal("9.50")
        assert analysis.confidence == 0.85
        assert analysis.metadata.rationale is None

    def test_percent_tax_rate_normalized(self) -> None:
        """A tax rate given as a percentage should be stored as a fraction."""
        analysis = parse_contract_response(
            json.dumps(contract_payload()), "ollama", "llava", 2.0
        )

        assert analysis.terms.tax_rate == Decimal("0.085")

    @pytest.mark.parametrize("tax_rate", ["8.5%", "n/a", "NaN", "Infinity"])
    def test_unreadable_tax_rate(self, tax_rate: str) -> None:
        """Should reject tax rates that are not finite numbers."""
        payload = contract_payload()
        payload["terms"]["tax_rate"] = tax_rate

        with pytest.raises(ExtractionParseError):
            parse_contract_response(json.dumps(payload), "ollama", "llava", 2.0)

    def test_model_cannot_choose_identity(self) -> None:
        """Ids, vendor ids and versions in the response should be ignored."""
        payload = contract_payload()
        payload["terms"].update({"id": "forged", "vendor_id": "other", "version": 7})

        analysis = parse_contract_response(json.dumps(payload), "ollama", "llava", 2.0)

        assert analysis.terms.id != "forged"
        assert analysis.terms.vendor_id is None
        assert analysis.terms.version == 1

    def test_inverted_date_window(self) -> None:
        """Should reject terms that expire before they take effect."""
        payload = contract_payload()
        payload["terms"]["expiration_date"] = "2023-01-01"

        with pytest.raises(ExtractionParseError):
            parse_contract_response(json.dumps(payload), "ollama", "llava", 2.0)

    def test_missing_terms(self) -> None:
        """Should reject responses without terms."""
        payload = contract_payload()
        del payload["terms"]

        with pytest.raises(ExtractionParseError, match="terms"):
            parse_contract_response(json.dumps(payload), "ollama", "llava", 2.0)
