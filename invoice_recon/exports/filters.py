"""Export filters, record selection and pre-start validation."""

import math
from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from invoice_recon.comparison.schema import DiscrepancyType, Severity
from invoice_recon.persistence.repository import InvoiceRecord, ReconciliationRepository
from invoice_recon.reports.schema import Relevance
from invoice_recon.shared.config import Settings

# Rough write throughput used for duration estimates.
ROWS_PER_SECOND = 500


class ExportType(str, Enum):
    INVOICES = "invoices"
    FINDINGS = "findings"
    DISPUTES = "disputes"


class ExportFilters(BaseModel):
    """Row selection for an export. Unset fields do not filter."""

    start_date: date | None = None
    end_date: date | None = None
    vendor_id: str | None = None
    priority: Severity | None = None
    relevance: Relevance | None = None
    finding_type: DiscrepancyType | None = None
    read_status: bool | None = Field(None, description="True for read rows, False for unread")
    include_not_relevant: bool = False
    chunk_size: int | None = Field(None, description="Rows written per chunk")


class ExportValidation(BaseModel):
    export_type: ExportType
    valid: bool
    errors: list[str] = Field(default_factory=list)
    estimated_records: int = 0
    estimated_duration_seconds: int = 0


class FindingRow(BaseModel):
    """One discrepancy of a current report, joined with its invoice and review."""

    finding_id: str
    report_id: str
    invoice_id: str
    invoice_number: str
    invoice_date: date | None = None
    vendor_id: str
    vendor_name: str
    type: DiscrepancyType
    severity: Severity
    field: str
    financial_impact: Decimal
    confidence: float
    description: str
    recommendation: str
    relevance: Relevance = Relevance.PENDING
    read: bool = False


ExportRecord = InvoiceRecord | FindingRow


def check_filters(
    export_type: ExportType, filters: ExportFilters, settings: Settings
) -> list[str]:
    """Errors in the filters themselves, before any record is counted."""
    errors = []
    if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
        errors.append("start_date must not be after end_date")
    if filters.chunk_size is not None and not (
        1 <= filters.chunk_size <= settings.export_max_chunk_size
    ):
        errors.append(f"chunk_size must be between 1 and {settings.export_max_chunk_size}")
    if export_type == ExportType.DISPUTES and filters.priority not in (None, Severity.HIGH):
        errors.append("Disputes export only includes high priority findings")
    if export_type == ExportType.INVOICES:
        finding_only = [
            name
            for name in ("priority", "relevance", "finding_type")
            if getattr(filters, name) is not None
        ]
        if finding_only:
            errors.append(f"Filters not applicable to invoice export: {', '.join(finding_only)}")
    return errors


def _in_date_range(value: date | None, filters: ExportFilters) -> bool:
    if filters.start_date is None and filters.end_date is None:
        return True
    if value is None:
        return False
    if filters.start_date is not None and value < filters.start_date:
        return False
    if filters.end_date is not None and value > filters.end_date:
        return False
    return True


def invoice_matches(record: InvoiceRecord, filters: ExportFilters) -> bool:
    if not _in_date_range(record.invoice_date, filters):
        return False
    if filters.vendor_id is not None and record.vendor_id != filters.vendor_id:
        return False
    if filters.read_status is not None and record.read != filters.read_status:
        return False
    return True


def finding_matches(row: FindingRow, export_type: ExportType, filters: ExportFilters) -> bool:
    if not _in_date_range(row.invoice_date, filters):
        return False
    if filters.vendor_id is not None and row.vendor_id != filters.vendor_id:
        return False
    if export_type == ExportType.DISPUTES and row.severity != Severity.HIGH:
        return False
    if filters.priority is not None and row.severity != filters.priority:
        return False
    if filters.finding_type is not None and row.type != filters.finding_type:
        return False
    if filters.read_status is not None and row.read != filters.read_status:
        return False
    if filters.relevance is not None:
        return row.relevance == filters.relevance
    return filters.include_not_relevant or row.relevance != Relevance.NOT_RELEVANT


async def finding_rows(repository: ReconciliationRepository) -> list[FindingRow]:
    """Flatten the discrepancies of every current (not superseded) report."""
    reports = await repository.list_reports()
    superseded = {r.supersedes_report_id for r in reports if r.supersedes_report_id}
    rows = []
    for report in reports:
        if report.id in superseded:
            continue
        invoice = await repository.get_invoice(report.invoice_id)
        if invoice is None:
            continue
        for index, discrepancy in enumerate(report.discrepancies):
            review = await repository.get_finding_review(report.id, index)
            rows.append(
                FindingRow(
                    finding_id=f"{report.id}-{index}",
                    report_id=report.id,
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    invoice_date=invoice.invoice_date,
                    vendor_id=invoice.vendor_id,
                    vendor_name=invoice.vendor_name,
                    type=discrepancy.type,
                    severity=discrepancy.severity,
                    field=discrepancy.field,
                    financial_impact=discrepancy.financial_impact,
                    confidence=discrepancy.confidence,
                    description=discrepancy.description,
                    recommendation=discrepancy.recommendation,
                    relevance=review.relevance if review else Relevance.PENDING,
                    read=review.read if review else False,
                )
            )
    return rows


async def select_records(
    repository: ReconciliationRepository, export_type: ExportType, filters: ExportFilters
) -> list[ExportRecord]:
    """Records an export with these filters would contain, in export order."""
    if export_type == ExportType.INVOICES:
        invoices = await repository.list_invoices()
        return [record for record in invoices if invoice_matches(record, filters)]
    rows = await finding_rows(repository)
    return [row for row in rows if finding_matches(row, export_type, filters)]


async def validate_export(
    repository: ReconciliationRepository,
    settings: Settings,
    export_type: ExportType,
    filters: ExportFilters,
) -> ExportValidation:
    """Check filters and estimate the export size.

    An export is valid only when its filters are consistent and it selects
    at least one and at most export_max_records records.
    """
    errors = check_filters(export_type, filters, settings)
    estimated = 0
    if not errors:
        estimated = len(await select_records(repository, export_type, filters))
        if estimated == 0:
            errors.append("No records match the selected filters")
        elif estimated > settings.export_max_records:
            errors.append(
                f"Export of {estimated} records exceeds the maximum of "
                f"{settings.export_max_records}"
            )
    return ExportValidation(
        export_type=export_type,
        valid=not errors,
        errors=errors,
        estimated_records=estimated,
        estimated_duration_seconds=math.ceil(estimated / ROWS_PER_SECOND),
    )
