"""Unit tests for reconciliation repositories.

Both implementations run the same behaviour checks; the Redis one talks to
a dict-backed stand-in for the connection.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from invoice_recon.comparison.schema import Discrepancy, DiscrepancyType, Severity
from invoice_recon.extraction.mock_provider import SAMPLE_TERMS
from invoice_recon.extraction.schema import VendorData
from invoice_recon.persistence.repository import (
    InMemoryRepository,
    InvoiceRecord,
    ReconciliationRepository,
    RedisRepository,
)
from invoice_recon.reports.schema import (
    ComplianceStatus,
    FindingReview,
    ReconciliationReport,
    Relevance,
    ReportMetadata,
)


def hash_redis() -> MagicMock:
    """Mock Redis connection supporting the hash commands."""
    data: dict[str, dict[str, Any]] = {}

    async def hset(name: str, key: str, value: Any) -> int:
        data.setdefault(name, {})[key] = value
        return 1

    async def hsetnx(name: str, key: str, value: Any) -> int:
        fields = data.setdefault(name, {})
        if key in fields:
            return 0
        fields[key] = value
        return 1

    async def hget(name: str, key: str) -> Any:
        return data.get(name, {}).get(key)

    async def hgetall(name: str) -> dict[str, Any]:
        return dict(data.get(name, {}))

    async def hincrby(name: str, key: str, amount: int = 1) -> int:
        fields = data.setdefault(name, {})
        fields[key] = int(fields.get(key, 0)) + amount
        return int(fields[key])

    mock = MagicMock()
    mock.hset = AsyncMock(side_effect=hset)
    mock.hsetnx = AsyncMock(side_effect=hsetnx)
    mock.hget = AsyncMock(side_effect=hget)
    mock.hgetall = AsyncMock(side_effect=hgetall)
    mock.hincrby = AsyncMock(side_effect=hincrby)
    mock.data = data
    return mock


@pytest.fixture(params=["memory", "redis"])
def repository(request: pytest.FixtureRequest) -> ReconciliationRepository:
    if request.param == "memory":
        return InMemoryRepository()
    return RedisRepository(hash_redis())


def make_report(invoice_id: str, **kwargs: Any) -> ReconciliationReport:
    discrepancy = Discrepancy(
        type=DiscrepancyType.PRICE,
        severity=Severity.HIGH,
        field="line_items[0].unit_price",
        expected="42.00",
        actual="45.50",
        financial_impact=Decimal("35.00"),
        confidence=0.9,
        description="Unit price 45.50 exceeds contracted 42.00",
        recommendation="Request a credit for the overcharge.",
    )
    return ReconciliationReport(
        invoice_id=invoice_id,
        contract_term_set_id="terms-1",
        has_discrepancies=True,
        total_discrepancy_amount=Decimal("35.00"),
        discrepancies=[discrepancy],
        rationale_text="One price finding.",
        metadata=ReportMetadata(ai_model="mock", provider="mock", extraction_confidence=0.95),
        compliance_status=ComplianceStatus.DISCREPANCY,
        highest_severity=Severity.HIGH,
        **kwargs,
    )


class TestVendorsAndTerms:
    """Test vendor and contract term set storage."""

    @pytest.mark.asyncio
    async def test_vendor_round_trip(self, repository: ReconciliationRepository) -> None:
        vendor = VendorData(name="Sysco Foods", category="food")

        await repository.save_vendor("sysco", vendor)

        assert await repository.get_vendor("sysco") == vendor
        assert await repository.get_vendor("unknown") is None

    @pytest.mark.asyncio
    async def test_terms_are_versioned(self, repository: ReconciliationRepository) -> None:
        """Should store each save as the next version under its own id."""
        terms = SAMPLE_TERMS.model_copy(update={"vendor_id": "sysco"})

        first = await repository.save_contract_term_set(terms)
        second = await repository.save_contract_term_set(terms)

        assert (first.version, second.version) == (1, 2)
        assert first.id != second.id
        assert await repository.load_contract_term_set("sysco") == second
        assert await repository.get_contract_term_set(first.id) == first
        assert await repository.load_contract_term_set("other") is None

    @pytest.mark.asyncio
    async def test_terms_keep_decimal_values(self, repository: ReconciliationRepository) -> None:
        stored = await repository.save_contract_term_set(
            SAMPLE_TERMS.model_copy(update={"vendor_id": "sysco"})
        )

        loaded = await repository.get_contract_term_set(stored.id)

        assert loaded is not None
        assert loaded.tax_rate == SAMPLE_TERMS.tax_rate
        assert loaded.pricing == SAMPLE_TERMS.pricing


class TestInvoicesAndReports:
    """Test invoice records, reports and reviews."""

    @pytest.mark.asyncio
    async def test_invoices_listed_oldest_first(
        self, repository: ReconciliationRepository
    ) -> None:
        now = datetime.now(timezone.utc)
        newer = InvoiceRecord(
            vendor_id="sysco",
            vendor_name="Sysco",
            invoice_number="B",
            invoice_date=date(2024, 5, 1),
            total_amount=Decimal("10.00"),
            created_at=now,
        )
        older = newer.model_copy(
            update={"id": "inv-old", "invoice_number": "A", "created_at": now - timedelta(days=1)}
        )

        await repository.save_invoice(newer)
        await repository.save_invoice(older)

        assert [r.invoice_number for r in await repository.list_invoices()] == ["A", "B"]
        assert await repository.get_invoice(newer.id) == newer

    @pytest.mark.asyncio
    async def test_reports_are_immutable(self, repository: ReconciliationRepository) -> None:
        """Should refuse to store a second report under an existing id."""
        report = make_report("inv-1")
        await repository.save_report(report)

        with pytest.raises(ValueError, match="immutable"):
            await repository.save_report(report)

        assert await repository.get_report(report.id) == report

    @pytest.mark.asyncio
    async def test_latest_report_skips_superseded(
        self, repository: ReconciliationRepository
    ) -> None:
        first = make_report("inv-1")
        second = make_report("inv-1", supersedes_report_id=first.id)
        await repository.save_report(first)
        await repository.save_report(second)
        await repository.save_report(make_report("inv-2"))

        assert await repository.latest_report_for_invoice("inv-1") == second
        assert len(await repository.list_reports()) == 3

    @pytest.mark.asyncio
    async def test_finding_review(self, repository: ReconciliationRepository) -> None:
        report = make_report("inv-1")
        await repository.save_report(report)
        review = FindingReview(
            report_id=report.id, discrepancy_index=0, relevance=Relevance.RELEVANT
        )

        await repository.save_finding_review(review)

        assert await repository.get_finding_review(report.id, 0) == review
        assert await repository.get_finding_review(report.id, 1) is None

    @pytest.mark.asyncio
    async def test_finding_review_checks_report(
        self, repository: ReconciliationRepository
    ) -> None:
        """Should reject reviews of unknown reports or out-of-range findings."""
        report = make_report("inv-1")
        await repository.save_report(report)

        with pytest.raises(ValueError, match="not found"):
            await repository.save_finding_review(
                FindingReview(report_id="nope", discrepancy_index=0)
            )
        with pytest.raises(ValueError, match="no discrepancy"):
            await repository.save_finding_review(
                FindingReview(report_id=report.id, discrepancy_index=5)
            )


class TestRedisRepository:
    """Test the Redis key layout."""

    @pytest.mark.asyncio
    async def test_records_shared_between_instances(self) -> None:
        """Two repositories over one connection should see the same records."""
        redis = hash_redis()
        api_side = RedisRepository(redis)
        worker_side = RedisRepository(redis)

        stored = await worker_side.save_contract_term_set(
            SAMPLE_TERMS.model_copy(update={"vendor_id": "sysco"})
        )
        await worker_side.save_report(make_report("inv-1"))

        assert await api_side.load_contract_term_set("sysco") == stored
        assert len(await api_side.list_reports()) == 1
        assert set(redis.data) == {"recon:term_set_versions", "recon:term_sets", "recon:reports"}
