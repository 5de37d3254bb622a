"""Storage of vendors, contract term sets, invoices, reports and reviews.

ReconciliationRepository is the seam the processing and export pipelines
depend on. InMemoryRepository backs development, tests and the single
process deployment; RedisRepository is shared by the API and arq workers
when jobs run on the queue.
"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Protocol, TypeVar

from pydantic import BaseModel, Field
from redis.asyncio import Redis

from invoice_recon.extraction.schema import ContractTermSet, VendorData
from invoice_recon.reports.schema import FindingReview, ReconciliationReport, utcnow

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class InvoiceRecord(BaseModel):
    """Stored invoice summary used for listings and exports."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    vendor_id: str
    vendor_name: str
    invoice_number: str
    invoice_date: date | None = None
    total_amount: Decimal
    currency: str = "USD"
    status: Literal["pending", "reconciled", "flagged"] = "pending"
    discrepancy_count: int = Field(0, ge=0)
    total_discrepancy_amount: Decimal = Field(Decimal("0"), ge=0)
    report_id: str | None = None
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class ReconciliationRepository(Protocol):
    async def save_vendor(self, vendor_id: str, vendor: VendorData) -> None: ...

    async def get_vendor(self, vendor_id: str) -> VendorData | None: ...

    async def save_contract_term_set(self, terms: ContractTermSet) -> ContractTermSet: ...

    async def get_contract_term_set(self, term_set_id: str) -> ContractTermSet | None: ...

    async def load_contract_term_set(self, vendor_id: str) -> ContractTermSet | None: ...

    async def save_invoice(self, record: InvoiceRecord) -> None: ...

    async def get_invoice(self, invoice_id: str) -> InvoiceRecord | None: ...

    async def list_invoices(self) -> list[InvoiceRecord]: ...

    async def save_report(self, report: ReconciliationReport) -> None: ...

    async def get_report(self, report_id: str) -> ReconciliationReport | None: ...

    async def latest_report_for_invoice(self, invoice_id: str) -> ReconciliationReport | None: ...

    async def list_reports(self) -> list[ReconciliationReport]: ...

    async def save_finding_review(self, review: FindingReview) -> None: ...

    async def get_finding_review(
        self, report_id: str, discrepancy_index: int
    ) -> FindingReview | None: ...


class InMemoryRepository:
    """Process-local repository.

    Term sets and reports are never modified once stored: saving terms for
    a vendor that already has some creates the next version under a new id.
    """

    def __init__(self) -> None:
        self._vendors: dict[str, VendorData] = {}
        self._term_sets: dict[str, ContractTermSet] = {}
        self._invoices: dict[str, InvoiceRecord] = {}
        self._reports: dict[str, ReconciliationReport] = {}
        self._reviews: dict[tuple[str, int], FindingReview] = {}

    async def save_vendor(self, vendor_id: str, vendor: VendorData) -> None:
        self._vendors[vendor_id] = vendor

    async def get_vendor(self, vendor_id: str) -> VendorData | None:
        return self._vendors.get(vendor_id)

    async def save_contract_term_set(self, terms: ContractTermSet) -> ContractTermSet:
        """Store terms as the newest version for their vendor.

        Returns:
            The stored term set, with its final id and version
        """
        versions = [t.version for t in self._term_sets.values() if t.vendor_id == terms.vendor_id]
        update: dict[str, object] = {"version": max(versions, default=0) + 1}
        if terms.id in self._term_sets:
            update["id"] = str(uuid.uuid4())
        stored = terms.model_copy(update=update)
        self._term_sets[stored.id] = stored
        logger.info(
            f"Stored contract term set {stored.id} v{stored.version} for vendor {stored.vendor_id}"
        )
        return stored

    async def get_contract_term_set(self, term_set_id: str) -> ContractTermSet | None:
        return self._term_sets.get(term_set_id)

    async def load_contract_term_set(self, vendor_id: str) -> ContractTermSet | None:
        """Latest term set version on file for a vendor."""
        candidates = [t for t in self._term_sets.values() if t.vendor_id == vendor_id]
        return max(candidates, key=lambda t: t.version, default=None)

    async def save_invoice(self, record: InvoiceRecord) -> None:
        self._invoices[record.id] = record

    async def get_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        return self._invoices.get(invoice_id)

    async def list_invoices(self) -> list[InvoiceRecord]:
        return sorted(self._invoices.values(), key=lambda r: r.created_at)

    async def save_report(self, report: ReconciliationReport) -> None:
        if report.id in self._reports:
            raise ValueError(f"Report {report.id} already exists; reports are immutable")
        self._reports[report.id] = report

    async def get_report(self, report_id: str) -> ReconciliationReport | None:
        return self._reports.get(report_id)

    async def latest_report_for_invoice(self, invoice_id: str) -> ReconciliationReport | None:
        superseded = {r.supersedes_report_id for r in self._reports.values()}
        current = [
            r
            for r in self._reports.values()
            if r.invoice_id == invoice_id and r.id not in superseded
        ]
        return max(current, key=lambda r: r.created_at, default=None)

    async def list_reports(self) -> list[ReconciliationReport]:
        return sorted(self._reports.values(), key=lambda r: r.created_at)

    async def save_finding_review(self, review: FindingReview) -> None:
        report = self._reports.get(review.report_id)
        if report is None:
            raise ValueError(f"Report not found: {review.report_id}")
        if review.discrepancy_index >= len(report.discrepancies):
            raise ValueError(
                f"Report {review.report_id} has no discrepancy {review.discrepancy_index}"
            )
        self._reviews[(review.report_id, review.discrepancy_index)] = review

    async def get_finding_review(
        self, report_id: str, discrepancy_index: int
    ) -> FindingReview | None:
        return self._reviews.get((report_id, discrepancy_index))


class RedisRepository:
    """Repository stored in Redis, one hash of id -> JSON per record type.

    Keys live under a prefix (recon:vendors, recon:term_sets, ...) and do not
    expire. Term set versions come from a per-vendor counter, so two workers
    saving terms for the same vendor never share a version.
    """

    def __init__(self, redis: Redis, prefix: str = "recon") -> None:
        self._redis = redis
        self._prefix = prefix

    def _key(self, name: str) -> str:
        return f"{self._prefix}:{name}"

    async def _get(self, name: str, field: str, model: type[ModelT]) -> ModelT | None:
        raw = await self._redis.hget(self._key(name), field)
        return model.model_validate_json(raw) if raw is not None else None

    async def _all(self, name: str, model: type[ModelT]) -> list[ModelT]:
        raw = await self._redis.hgetall(self._key(name))
        return [model.model_validate_json(value) for value in raw.values()]

    async def save_vendor(self, vendor_id: str, vendor: VendorData) -> None:
        await self._redis.hset(self._key("vendors"), vendor_id, vendor.model_dump_json())

    async def get_vendor(self, vendor_id: str) -> VendorData | None:
        return await self._get("vendors", vendor_id, VendorData)

    async def save_contract_term_set(self, terms: ContractTermSet) -> ContractTermSet:
        """Store terms as the newest version for their vendor.

        Returns:
            The stored term set, with its final id and version
        """
        version = await self._redis.hincrby(self._key("term_set_versions"), terms.vendor_id, 1)
        stored = terms.model_copy(update={"version": int(version)})
        if not await self._redis.hsetnx(
            self._key("term_sets"), stored.id, stored.model_dump_json()
        ):
            stored = stored.model_copy(update={"id": str(uuid.uuid4())})
            await self._redis.hset(self._key("term_sets"), stored.id, stored.model_dump_json())
        logger.info(
            f"Stored contract term set {stored.id} v{stored.version} for vendor {stored.vendor_id}"
        )
        return stored

    async def get_contract_term_set(self, term_set_id: str) -> ContractTermSet | None:
        return await self._get("term_sets", term_set_id, ContractTermSet)

    async def load_contract_term_set(self, vendor_id: str) -> ContractTermSet | None:
        """Latest term set version on file for a vendor."""
        candidates = [
            t for t in await self._all("term_sets", ContractTermSet) if t.vendor_id == vendor_id
        ]
        return max(candidates, key=lambda t: t.version, default=None)

    async def save_invoice(self, record: InvoiceRecord) -> None:
        await self._redis.hset(self._key("invoices"), record.id, record.model_dump_json())

    async def get_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        return await self._get("invoices", invoice_id, InvoiceRecord)

    async def list_invoices(self) -> list[InvoiceRecord]:
        return sorted(await self._all("invoices", InvoiceRecord), key=lambda r: r.created_at)

    async def save_report(self, report: ReconciliationReport) -> None:
        if not await self._redis.hsetnx(
            self._key("reports"), report.id, report.model_dump_json()
        ):
            raise ValueError(f"Report {report.id} already exists; reports are immutable")

    async def get_report(self, report_id: str) -> ReconciliationReport | None:
        return await self._get("reports", report_id, ReconciliationReport)

    async def latest_report_for_invoice(self, invoice_id: str) -> ReconciliationReport | None:
        reports = await self._all("reports", ReconciliationReport)
        superseded = {r.supersedes_report_id for r in reports}
        current = [r for r in reports if r.invoice_id == invoice_id and r.id not in superseded]
        return max(current, key=lambda r: r.created_at, default=None)

    async def list_reports(self) -> list[ReconciliationReport]:
        reports = await self._all("reports", ReconciliationReport)
        return sorted(reports, key=lambda r: r.created_at)

    async def save_finding_review(self, review: FindingReview) -> None:
        report = await self.get_report(review.report_id)
        if report is None:
            raise ValueError(f"Report not found: {review.report_id}")
        if review.discrepancy_index >= len(report.discrepancies):
            raise ValueError(
                f"Report {review.report_id} has no discrepancy {review.discrepancy_index}"
            )
        await self._redis.hset(
            self._key("reviews"),
            f"{review.report_id}:{review.discrepancy_index}",
            review.model_dump_json(),
        )

    async def get_finding_review(
        self, report_id: str, discrepancy_index: int
    ) -> FindingReview | None:
        return await self._get("reviews", f"{report_id}:{discrepancy_index}", FindingReview)
