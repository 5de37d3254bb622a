"""Parsing of model responses into validated analysis results.

Handles common LLM quirks (markdown code fences, prose around the JSON).
Anything that does not validate against the declared structure raises
ExtractionParseError; partial results are never returned.
"""

import json
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from invoice_recon.extraction.schema import (
    ContractAnalysis,
    ContractTermSet,
    ExtractedInvoice,
    ExtractionMetadata,
    InvoiceAnalysis,
    VendorData,
)
from invoice_recon.shared.errors import ExtractionParseError

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_json_object(response_text: str) -> dict[str, Any]:
    """Strip formatting wrappers and parse the JSON object in a response.

    Args:
        response_text: Raw model response

    Returns:
        Parsed JSON object

    Raises:
        ExtractionParseError: If no JSON object can be parsed
    """
    if not response_text or not response_text.strip():
        raise ExtractionParseError("Empty response from analysis service")

    candidate = response_text.strip()
    fence_match = _FENCE_RE.search(candidate)
    if fence_match:
        candidate = fence_match.group(1).strip()
    else:
        object_match = _OBJECT_RE.search(candidate)
        if object_match:
            candidate = object_match.group(0)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ExtractionParseError(f"Response is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ExtractionParseError("Response JSON is not an object")
    return parsed


def _require(payload: dict[str, Any], key: str) -> Any:
    if key not in payload or payload[key] is None:
        raise ExtractionParseError(f"Response is missing required field '{key}'")
    return payload[key]


def parse_invoice_response(
    response_text: str,
    provider: str,
    ai_model: str,
    processing_time_seconds: float,
) -> InvoiceAnalysis:
    """Parse an invoice analysis response.

    Args:
        response_text: Raw model response
        provider: Provider name recorded in metadata
        ai_model: Model identifier recorded in metadata
        processing_time_seconds: Wall time of the call

    Returns:
        Validated InvoiceAnalysis

    Raises:
        ExtractionParseError: If the response does not match the invoice shape
    """
    payload = extract_json_object(response_text)
    try:
        invoice_fields = _require(payload, "invoice")
        if not isinstance(invoice_fields, dict):
            raise ExtractionParseError("Field 'invoice' is not an object")
        invoice = ExtractedInvoice(
            **{
                **invoice_fields,
                "extraction_confidence": _require(payload, "confidence"),
                "field_confidence": payload.get("field_confidence") or {},
            }
        )
    except (PydanticValidationError, TypeError) as e:
        raise ExtractionParseError(f"Invoice response failed validation: {e}", provider) from e

    rationale = payload.get("rationale")
    return InvoiceAnalysis(
        invoice=invoice,
        metadata=ExtractionMetadata(
            ai_model=ai_model,
            provider=provider,
            processing_time_seconds=processing_time_seconds,
            rationale=rationale if isinstance(rationale, str) and rationale.strip() else None,
        ),
    )


def parse_contract_response(
    response_text: str,
    provider: str,
    ai_model: str,
    processing_time_seconds: float,
) -> ContractAnalysis:
    """Parse a contract analysis response.

    Raises:
        ExtractionParseError: If the response does not match the contract shape
    """
    payload = extract_json_object(response_text)
    try:
        vendor_fields = _require(payload, "vendor")
        terms_fields = _require(payload, "terms")
        if not isinstance(vendor_fields, dict) or not isinstance(terms_fields, dict):
            raise ExtractionParseError("Fields 'vendor' and 'terms' must be objects")
        vendor = VendorData(**vendor_fields)
        terms = ContractTermSet(
            **{k: v for k, v in terms_fields.items() if k not in ("id", "vendor_id", "version")}
        )
        rationale = payload.get("rationale")
        return ContractAnalysis(
            vendor=vendor,
            terms=terms,
            confidence=_require(payload, "confidence"),
            metadata=ExtractionMetadata(
                ai_model=ai_model,
                provider=provider,
                processing_time_seconds=processing_time_seconds,
                rationale=rationale if isinstance(rationale, str) and rationale.strip() else None,
            ),
        )
    except (PydanticValidationError, TypeError) as e:
        raise ExtractionParseError(f"Contract response failed validation: {e}", provider) from e
