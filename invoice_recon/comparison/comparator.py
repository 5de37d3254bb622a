"""Deterministic comparison of an extracted invoice against contract terms.

Pure functions over validated data: no I/O, no clock, no randomness. The
same invoice and term set always produce the same discrepancies in the same
order.

Checks run per invoice line (matching, price, quantity) and per invoice
(discount, tax, payment terms, contract period, arithmetic). Every check
contributes one checklist item, whose confidence is the lowest extraction
confidence among the fields the check read.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field

from invoice_recon.comparison.matching import TermMatch, match_pricing_term
from invoice_recon.comparison.schema import (
    CheckCategory,
    ChecklistItem,
    ComparisonResult,
    Discrepancy,
    DiscrepancyType,
    Severity,
)
from invoice_recon.extraction.schema import (
    ContractTermSet,
    DiscountTerm,
    ExtractedInvoice,
    LineItem,
)
from invoice_recon.shared.config import Settings

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

CHECKLIST_LABELS = {
    CheckCategory.LINE_ITEM_MATCH: "Line items match contracted items",
    CheckCategory.PRICE: "Unit prices within contracted rates",
    CheckCategory.QUANTITY: "Quantities within contracted order limits",
    CheckCategory.DISCOUNT: "Volume discounts applied",
    CheckCategory.TAX: "Tax calculated at contracted rate",
    CheckCategory.PAYMENT_TERMS: "Payment terms match contract",
    CheckCategory.CONTRACT_PERIOD: "Invoice dated within contract term",
    CheckCategory.ARITHMETIC: "Invoice totals add up",
}


class ComparatorConfig(BaseModel):
    """Tolerances and severity thresholds for the comparator."""

    price_tolerance_pct: Decimal = Field(Decimal("0"), ge=0)
    price_high_severity_pct: Decimal = Field(Decimal("10"), ge=0)
    price_high_severity_amount: Decimal = Field(Decimal("500.00"), ge=0)
    tax_tolerance: Decimal = Field(Decimal("1.00"), ge=0)
    tax_medium_severity_amount: Decimal = Field(Decimal("10.00"), ge=0)
    rounding_tolerance: Decimal = Field(Decimal("0.01"), ge=0)
    match_similarity_floor: float = Field(0.5, ge=0, le=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ComparatorConfig":
        return cls(
            price_tolerance_pct=settings.price_tolerance_pct,
            price_high_severity_pct=settings.price_high_severity_pct,
            price_high_severity_amount=settings.price_high_severity_amount,
            tax_tolerance=settings.tax_tolerance,
            tax_medium_severity_amount=settings.tax_medium_severity_amount,
            rounding_tolerance=settings.rounding_tolerance,
            match_similarity_floor=settings.match_similarity_floor,
        )


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_payment_terms(terms: str) -> str:
    """Reduce payment terms to comparable tokens ('Net 30 Days' -> 'net 30')."""
    cleaned = "".join(ch if ch.isalnum() else " " for ch in terms.lower())
    return " ".join(token for token in cleaned.split() if token not in ("day", "days"))


@dataclass
class _CheckOutcome:
    category: CheckCategory
    discrepancies: list[Discrepancy] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)
    details: str = ""


@dataclass
class _MatchedLine:
    index: int
    line: LineItem
    match: TermMatch


class TermComparator:
    """Compares extracted invoices against contract term sets."""

    def __init__(self, config: ComparatorConfig | None = None) -> None:
        self.config = config or ComparatorConfig()

    def compare(self, invoice: ExtractedInvoice, terms: ContractTermSet) -> ComparisonResult:
        """Produce discrepancies and a checklist for one invoice.

        Args:
            invoice: Extracted invoice
            terms: Governing contract terms

        Returns:
            ComparisonResult with discrepancies in check order and one
            checklist item per CheckCategory
        """
        matching, matched = self._check_line_items(invoice, terms)
        outcomes = [
            matching,
            self._check_prices(invoice, matched),
            self._check_quantities(invoice, matched),
            self._check_discount(invoice, terms, matched),
            self._check_tax(invoice, terms),
            self._check_payment_terms(invoice, terms),
            self._check_contract_period(invoice, terms),
            self._check_arithmetic(invoice),
        ]

        discrepancies: list[Discrepancy] = []
        checklist: list[ChecklistItem] = []
        for outcome in outcomes:
            discrepancies.extend(outcome.discrepancies)
            checklist.append(
                ChecklistItem(
                    category=outcome.category,
                    item=CHECKLIST_LABELS[outcome.category],
                    passed=not outcome.discrepancies,
                    details=outcome.details,
                    confidence=invoice.confidence_for(*outcome.fields),
                )
            )
        return ComparisonResult(discrepancies=discrepancies, checklist=checklist)

    def _check_line_items(
        self, invoice: ExtractedInvoice, terms: ContractTermSet
    ) -> tuple[_CheckOutcome, list[_MatchedLine]]:
        outcome = _CheckOutcome(CheckCategory.LINE_ITEM_MATCH)
        matched: list[_MatchedLine] = []
        for index, line in enumerate(invoice.line_items):
            path = f"line_items[{index}].description"
            outcome.fields.append(path)
            match = match_pricing_term(
                line.description, terms.pricing, self.config.match_similarity_floor
            )
            if match is not None:
                matched.append(_MatchedLine(index=index, line=line, match=match))
                continue
            outcome.discrepancies.append(
                Discrepancy(
                    type=DiscrepancyType.TERMS,
                    severity=Severity.LOW,
                    field=path,
                    expected="item listed in contract pricing",
                    actual=line.description,
                    financial_impact=Decimal("0.00"),
                    confidence=invoice.confidence_for(path),
                    description=f"Unrecognized line item '{line.description}' has no matching "
                    f"contract pricing term",
                    recommendation="Confirm the item is covered by the contract or add it to "
                    "the contract terms",
                )
            )

        total = len(invoice.line_items)
        unmatched = total - len(matched)
        if unmatched:
            outcome.details = f"{unmatched} of {total} line items not found in contract pricing"
        else:
            outcome.details = f"{total} of {total} line items matched contract pricing"
        return outcome, matched

    def _check_prices(
        self, invoice: ExtractedInvoice, matched: list[_MatchedLine]
    ) -> _CheckOutcome:
        outcome = _CheckOutcome(CheckCategory.PRICE)
        for entry in matched:
            path = f"line_items[{entry.index}].unit_price"
            outcome.fields.append(path)
            term = entry.match.term
            contracted = term.unit_price
            actual = entry.line.unit_price
            overage = actual - contracted
            allowed = contracted * self.config.price_tolerance_pct / HUNDRED
            if overage <= 0 or overage <= allowed:
                continue

            impact = money(overage * entry.line.quantity)
            if contracted > 0:
                overage_pct = overage / contracted * HUNDRED
                is_high = overage_pct > self.config.price_high_severity_pct
            else:
                overage_pct = None
                is_high = True
            if impact > self.config.price_high_severity_amount:
                is_high = True

            pct_text = ""
            if overage_pct is not None:
                pct_text = f" ({overage_pct.quantize(Decimal('0.1'))}%)"
            outcome.discrepancies.append(
                Discrepancy(
                    type=DiscrepancyType.PRICE,
                    severity=Severity.HIGH if is_high else Severity.MEDIUM,
                    field=path,
                    expected=contracted,
                    actual=actual,
                    financial_impact=impact,
                    confidence=invoice.confidence_for(path),
                    description=f"Unit price for {term.item} exceeds contracted rate of "
                    f"{contracted} per {term.unit} by {money(overage)}{pct_text}",
                    recommendation="Contact vendor to apply correct pricing or obtain approval "
                    "for price increase",
                )
            )

        over = len(outcome.discrepancies)
        outcome.details = (
            f"{over} line item(s) priced above contract"
            if over
            else f"{len(matched)} matched line item(s) at or below contracted rates"
        )
        return outcome

    def _check_quantities(
        self, invoice: ExtractedInvoice, matched: list[_MatchedLine]
    ) -> _CheckOutcome:
        outcome = _CheckOutcome(CheckCategory.QUANTITY)
        for entry in matched:
            path = f"line_items[{entry.index}].quantity"
            outcome.fields.append(path)
            term = entry.match.term
            quantity = entry.line.quantity

            if term.min_order_qty is not None and quantity < term.min_order_qty:
                outcome.discrepancies.append(
                    Discrepancy(
                        type=DiscrepancyType.QUANTITY,
                        severity=Severity.LOW,
                        field=path,
                        expected=term.min_order_qty,
                        actual=quantity,
                        financial_impact=Decimal("0.00"),
                        confidence=invoice.confidence_for(path),
                        description=f"Quantity ordered ({quantity}) is less than contracted "
                        f"minimum ({term.min_order_qty} {term.unit}) for {term.item}",
                        recommendation="Verify if minimum order requirements apply or adjust "
                        "future orders",
                    )
                )
            elif term.max_order_qty is not None and quantity > term.max_order_qty:
                excess = quantity - term.max_order_qty
                outcome.discrepancies.append(
                    Discrepancy(
                        type=DiscrepancyType.QUANTITY,
                        severity=Severity.MEDIUM,
                        field=path,
                        expected=term.max_order_qty,
                        actual=quantity,
                        financial_impact=money(excess * entry.line.unit_price),
                        confidence=invoice.confidence_for(path),
                        description=f"Quantity billed ({quantity}) exceeds contracted maximum "
                        f"({term.max_order_qty} {term.unit}) for {term.item}",
                        recommendation="Confirm the excess quantity was ordered and approved",
                    )
                )

        outcome.details = (
            f"{len(outcome.discrepancies)} line item(s) outside order limits"
            if outcome.discrepancies
            else "All matched quantities within contracted limits"
        )
        return outcome

    def _applicable_discount(
        self, invoice: ExtractedInvoice, terms: ContractTermSet
    ) -> DiscountTerm | None:
        reached = [d for d in terms.discounts if invoice.subtotal >= d.threshold_amount]
        if not reached:
            return None
        return max(reached, key=lambda d: (d.threshold_amount, d.discount_pct))

    def _check_discount(
        self, invoice: ExtractedInvoice, terms: ContractTermSet, matched: list[_MatchedLine]
    ) -> _CheckOutcome:
        outcome = _CheckOutcome(CheckCategory.DISCOUNT, fields=["subtotal"])
        discount = self._applicable_discount(invoice, terms)
        if discount is None:
            outcome.details = f"No discount threshold reached (subtotal {invoice.subtotal})"
            return outcome

        outcome.fields.extend(f"line_items[{entry.index}].total_price" for entry in matched)
        base = sum(
            (entry.match.term.unit_price * entry.line.quantity for entry in matched), Decimal("0")
        )
        if base <= 0:
            outcome.details = "Discount threshold reached but no contracted lines to discount"
            return outcome

        rate = discount.discount_pct / HUNDRED
        expected = base * (1 - rate)
        actual = sum((entry.line.total_price for entry in matched), Decimal("0"))
        if actual <= expected + self.config.rounding_tolerance:
            outcome.details = (
                f"{discount.discount_pct}% discount above {discount.threshold_amount} applied"
            )
            return outcome

        # Price overage is reported by the price check; only the missed
        # discount itself counts here.
        impact = money(min(actual, base) - expected)
        outcome.discrepancies.append(
            Discrepancy(
                type=DiscrepancyType.DISCOUNT,
                severity=Severity.MEDIUM,
                field="subtotal",
                expected=money(expected),
                actual=money(actual),
                financial_impact=impact,
                confidence=invoice.confidence_for(*outcome.fields),
                description=f"Order subtotal {invoice.subtotal} qualifies for the "
                f"{discount.discount_pct}% discount above {discount.threshold_amount}, "
                f"but contracted lines total {money(actual)} instead of {money(expected)}",
                recommendation="Request a credit for the unapplied volume discount",
            )
        )
        outcome.details = f"{discount.discount_pct}% volume discount not reflected in prices"
        return outcome

    def _check_tax(self, invoice: ExtractedInvoice, terms: ContractTermSet) -> _CheckOutcome:
        outcome = _CheckOutcome(CheckCategory.TAX, fields=["subtotal", "tax_amount"])
        expected = invoice.subtotal * terms.tax_rate
        delta = invoice.tax_amount - expected
        outcome.details = (
            f"Expected {money(expected)} at {terms.tax_rate} rate, invoiced {invoice.tax_amount}"
        )
        if abs(delta) <= self.config.tax_tolerance:
            return outcome

        severity = (
            Severity.MEDIUM if abs(delta) > self.config.tax_medium_severity_amount else Severity.LOW
        )
        direction = "over" if delta > 0 else "under"
        outcome.discrepancies.append(
            Discrepancy(
                type=DiscrepancyType.TAX,
                severity=severity,
                field="tax_amount",
                expected=money(expected),
                actual=invoice.tax_amount,
                financial_impact=money(delta),
                confidence=invoice.confidence_for(*outcome.fields),
                description=f"Tax {direction}charged by {money(abs(delta))}: expected "
                f"{money(expected)} at the contracted rate of {terms.tax_rate}",
                recommendation="Ask the vendor to reissue the invoice with the contracted tax rate",
            )
        )
        return outcome

    def _check_payment_terms(
        self, invoice: ExtractedInvoice, terms: ContractTermSet
    ) -> _CheckOutcome:
        outcome = _CheckOutcome(CheckCategory.PAYMENT_TERMS, fields=["payment_terms"])
        if not invoice.payment_terms:
            outcome.details = "No payment terms printed on invoice"
            return outcome

        if normalize_payment_terms(invoice.payment_terms) == normalize_payment_terms(
            terms.payment_terms
        ):
            outcome.details = f"Invoice terms '{invoice.payment_terms}' match contract"
            return outcome

        outcome.discrepancies.append(
            Discrepancy(
                type=DiscrepancyType.TERMS,
                severity=Severity.LOW,
                field="payment_terms",
                expected=terms.payment_terms,
                actual=invoice.payment_terms,
                financial_impact=Decimal("0.00"),
                confidence=invoice.confidence_for("payment_terms"),
                description=f"Invoice payment terms '{invoice.payment_terms}' differ from "
                f"contracted '{terms.payment_terms}'",
                recommendation="Schedule payment according to the contracted terms",
            )
        )
        outcome.details = "Invoice payment terms differ from contract"
        return outcome

    def _check_contract_period(
        self, invoice: ExtractedInvoice, terms: ContractTermSet
    ) -> _CheckOutcome:
        outcome = _CheckOutcome(CheckCategory.CONTRACT_PERIOD, fields=["invoice_date"])
        issued = invoice.issued_on()
        if issued is None:
            outcome.details = f"Invoice date '{invoice.invoice_date}' could not be read as a date"
            return outcome

        before = issued < terms.effective_date
        after = terms.expiration_date is not None and issued > terms.expiration_date
        window = f"{terms.effective_date} to {terms.expiration_date or 'open-ended'}"
        if not (before or after):
            outcome.details = f"Invoice date {issued} within contract term {window}"
            return outcome

        outcome.discrepancies.append(
            Discrepancy(
                type=DiscrepancyType.TERMS,
                severity=Severity.MEDIUM,
                field="invoice_date",
                expected=window,
                actual=invoice.invoice_date,
                financial_impact=Decimal("0.00"),
                confidence=invoice.confidence_for("invoice_date"),
                description=f"Invoice dated {issued} falls outside the contract term {window}",
                recommendation="Confirm which agreement governs this invoice before approving",
            )
        )
        outcome.details = f"Invoice date {issued} outside contract term"
        return outcome

    def _check_arithmetic(self, invoice: ExtractedInvoice) -> _CheckOutcome:
        outcome = _CheckOutcome(
            CheckCategory.ARITHMETIC, fields=["subtotal", "tax_amount", "total_amount"]
        )
        computed = invoice.subtotal + invoice.tax_amount
        delta = invoice.total_amount - computed
        if abs(delta) <= self.config.rounding_tolerance:
            outcome.details = f"Subtotal {invoice.subtotal} + tax {invoice.tax_amount} = total"
            return outcome

        outcome.discrepancies.append(
            Discrepancy(
                type=DiscrepancyType.OTHER,
                severity=Severity.HIGH,
                field="total_amount",
                expected=computed,
                actual=invoice.total_amount,
                financial_impact=money(delta),
                confidence=invoice.confidence_for(*outcome.fields),
                description=f"Invoice total {invoice.total_amount} does not equal subtotal "
                f"{invoice.subtotal} plus tax {invoice.tax_amount}",
                recommendation="Have a reviewer confirm the invoice totals before payment",
            )
        )
        outcome.details = f"Total differs from subtotal + tax by {money(delta)}"
        return outcome


def compare(
    invoice: ExtractedInvoice,
    terms: ContractTermSet,
    config: ComparatorConfig | None = None,
) -> ComparisonResult:
    """Compare an invoice against contract terms with the given (or default) tolerances."""
    return TermComparator(config).compare(invoice, terms)
