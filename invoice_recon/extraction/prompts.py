"""Prompt construction for live document analysis.

Each prompt names every field the service needs and the exact JSON shape to
return. Invoice prompts also ask for a rationale so the narrative shown on
the reconciliation report comes from the same round trip as the extraction.
"""

import json

from invoice_recon.extraction.schema import ContractTermSet

SYSTEM_PROMPT = (
    "You are an invoice and contract analysis assistant for a vendor reconciliation "
    "platform. You read document images and answer with a single JSON object only."
)

INVOICE_OUTPUT_SHAPE = """{
  "confidence": number (0-1, your certainty in the extraction as a whole),
  "invoice": {
    "invoice_number": string,
    "vendor_name": string,
    "invoice_date": string (YYYY-MM-DD),
    "due_date": string|null (YYYY-MM-DD),
    "subtotal": number,
    "tax_amount": number,
    "total_amount": number,
    "currency": string (ISO 4217),
    "payment_terms": string|null,
    "vendor_address": string|null,
    "line_items": [
      {"description": string, "quantity": number, "unit_price": number,
       "total_price": number, "unit": string|null}
    ]
  },
  "field_confidence": {"<field path>": number (0-1)},
  "rationale": string
}"""

CONTRACT_OUTPUT_SHAPE = """{
  "confidence": number (0-1),
  "vendor": {
    "name": string,
    "dba_name": string|null,
    "category": string|null,
    "address": string|null,
    "contact_email": string|null
  },
  "terms": {
    "payment_terms": string,
    "tax_rate": number (fraction, 0.085 for 8.5%),
    "effective_date": string (YYYY-MM-DD),
    "expiration_date": string|null (YYYY-MM-DD),
    "pricing": [
      {"item": string, "unit_price": number, "unit": string,
       "min_order_qty": number|null, "max_order_qty": number|null}
    ],
    "discounts": [
      {"threshold_amount": number, "discount_pct": number (percent), "conditions": string}
    ]
  },
  "rationale": string
}"""


def _terms_summary(terms: ContractTermSet) -> str:
    pricing = [
        {
            "item": term.item,
            "unit_price": str(term.unit_price),
            "unit": term.unit,
            "min_order_qty": None if term.min_order_qty is None else str(term.min_order_qty),
            "max_order_qty": None if term.max_order_qty is None else str(term.max_order_qty),
        }
        for term in terms.pricing
    ]
    discounts = [
        {
            "threshold_amount": str(discount.threshold_amount),
            "discount_pct": str(discount.discount_pct),
            "conditions": discount.conditions,
        }
        for discount in terms.discounts
    ]
    return (
        f"- Payment terms: {terms.payment_terms}\n"
        f"- Tax rate: {terms.tax_rate}\n"
        f"- Pricing: {json.dumps(pricing)}\n"
        f"- Discounts: {json.dumps(discounts)}"
    )


def build_invoice_prompt(contract_terms: ContractTermSet | None = None) -> str:
    """Build the user prompt for invoice analysis.

    Args:
        contract_terms: Governing terms, listed so the model reads item names
            and units the way the contract writes them

    Returns:
        Prompt text to send alongside the invoice image
    """
    prompt = """Analyze this invoice image and extract:

1. Invoice details: number, invoice date, due date, subtotal, tax amount, total amount, currency
2. Vendor: name and address
3. Line items: description, quantity, unit price, total price, unit of measure
4. Payment terms exactly as printed on the invoice
"""

    if contract_terms is not None:
        prompt += f"""
The invoice is governed by these contract terms. Use the contract's item names to
read line item descriptions, but report the invoice's own numbers:
{_terms_summary(contract_terms)}
"""

    prompt += f"""
Return ONLY JSON in exactly this shape:
{INVOICE_OUTPUT_SHAPE}

Rules:
- Amounts are plain numbers without currency symbols or thousands separators
- Convert dates to YYYY-MM-DD
- field_confidence keys are paths such as "line_items[0].unit_price" or "tax_amount";
  include only fields you are less than fully certain about
- rationale explains what you read, anything illegible, and any differences you
  noticed against the contract terms
"""
    return prompt


def build_contract_prompt() -> str:
    """Build the user prompt for contract analysis."""
    return f"""Analyze this vendor contract image and extract the vendor details and the
commercial terms that invoices will be checked against.

Return ONLY JSON in exactly this shape:
{CONTRACT_OUTPUT_SHAPE}

Rules:
- Amounts are plain numbers without currency symbols
- Convert dates to YYYY-MM-DD
- Use null for anything not stated in the contract
- rationale summarises the contract and anything you could not read
"""
