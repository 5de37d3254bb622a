"""CSV layouts for export files. Columns are fixed per export type."""

import csv
import io
from collections.abc import Sequence

from invoice_recon.exports.filters import ExportRecord, ExportType, FindingRow
from invoice_recon.persistence.repository import InvoiceRecord

COLUMNS: dict[ExportType, list[str]] = {
    ExportType.INVOICES: [
        "Invoice ID",
        "Invoice Number",
        "Vendor",
        "Invoice Date",
        "Total Amount",
        "Currency",
        "Status",
        "Discrepancies",
        "Discrepancy Amount",
        "Read",
    ],
    ExportType.FINDINGS: [
        "Finding ID",
        "Invoice Number",
        "Vendor",
        "Invoice Date",
        "Priority",
        "Type",
        "Field",
        "Amount",
        "Confidence",
        "Description",
        "Recommendation",
        "Relevance",
        "Read",
    ],
    ExportType.DISPUTES: [
        "Dispute ID",
        "Invoice Number",
        "Vendor",
        "Invoice Date",
        "Type",
        "Disputed Amount",
        "Evidence",
        "Dispute Draft",
    ],
}


def dispute_draft(row: FindingRow) -> str:
    text = f"Invoice {row.invoice_number}: {row.description}"
    if row.recommendation:
        text += f" {row.recommendation}"
    if row.financial_impact > 0:
        text += f" Requested credit: {row.financial_impact:.2f}."
    return text


def row_values(export_type: ExportType, record: ExportRecord) -> list[str]:
    if export_type == ExportType.INVOICES:
        if not isinstance(record, InvoiceRecord):
            raise TypeError(f"Invoice export expects InvoiceRecord, got {type(record).__name__}")
        return [
            record.id,
            record.invoice_number,
            record.vendor_name,
            record.invoice_date.isoformat() if record.invoice_date else "",
            f"{record.total_amount:.2f}",
            record.currency,
            record.status,
            str(record.discrepancy_count),
            f"{record.total_discrepancy_amount:.2f}",
            "yes" if record.read else "no",
        ]

    if not isinstance(record, FindingRow):
        raise TypeError(f"{export_type.value} export expects FindingRow")
    invoice_date = record.invoice_date.isoformat() if record.invoice_date else ""
    if export_type == ExportType.FINDINGS:
        return [
            record.finding_id,
            record.invoice_number,
            record.vendor_name,
            invoice_date,
            record.severity.value,
            record.type.value,
            record.field,
            f"{record.financial_impact:.2f}",
            f"{record.confidence:.2f}",
            record.description,
            record.recommendation,
            record.relevance.value,
            "yes" if record.read else "no",
        ]
    return [
        record.finding_id,
        record.invoice_number,
        record.vendor_name,
        invoice_date,
        record.type.value,
        f"{max(record.financial_impact, 0):.2f}",
        record.field,
        dispute_draft(record),
    ]


def render_rows(
    export_type: ExportType, records: Sequence[ExportRecord], include_header: bool = False
) -> str:
    """Render one chunk of records as CSV text."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    if include_header:
        writer.writerow(COLUMNS[export_type])
    for record in records:
        writer.writerow(row_values(export_type, record))
    return buffer.getvalue()
