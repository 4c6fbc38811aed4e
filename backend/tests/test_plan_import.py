"""Tests for collector plan import."""

import pytest
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import IntegrityError

from app.errors import UpstreamError
from app.models.audit import AuditLog
from app.models.loan import LoanStatusId
from app.models.report import CollectorMonthlyReport, CollectorMonthlyTarget, ReportStatus
from app.services.plan_import import PlanImportResult, import_plan, validate_rows


def _scalars(items):
    result = MagicMock()
    result.scalars.return_value.all.return_value = items
    return result


def _rows(items):
    result = MagicMock()
    result.all.return_value = items
    return result


def _user(user_id, first="Levan", last="Gelashvili"):
    user = SimpleNamespace(id=user_id, first_name=first, last_name=last)
    user.full_name = f"{first} {last}"
    return user


def _mock_db(*results):
    db = AsyncMock()
    db.add = MagicMock()
    db.execute.side_effect = list(results)
    return db


def _added(db, model):
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], model)]


# ── validate_rows ─────────────────────────────────

class TestValidateRows:
    def test_invalid_rows_counted(self):
        result = PlanImportResult()
        valid = validate_rows(
            [
                {"collector_id": 5, "year": 2026, "month": 3, "target_amount": "1500"},
                {"collector_id": 5, "year": 2026, "month": 13, "target_amount": "1500"},
                {"collector_id": "x", "year": 2026, "month": 3, "target_amount": "1"},
                {"collector_id": 6, "year": 2026, "month": 3, "target_amount": "-1"},
            ],
            result,
        )
        assert len(valid) == 1
        assert result.total_rows == 4
        assert result.invalid == 3
        assert len(result.errors) == 3
        assert result.errors[0].startswith("Row 2:")

    def test_repeated_period_rejected(self):
        result = PlanImportResult()
        row = {"collector_id": 5, "year": 2026, "month": 3, "target_amount": "1500"}
        valid = validate_rows([row, dict(row)], result)
        assert len(valid) == 1
        assert result.invalid == 1


# ── import_plan ───────────────────────────────────

class TestImportPlan:
    @pytest.mark.asyncio
    async def test_creates_target_and_report(self):
        db = _mock_db(
            _scalars([_user(5)]),
            _rows([
                (5, 10, Decimal("1000"), LoanStatusId.NEW),
                (5, 11, Decimal("500"), LoanStatusId.PROMISED_TO_PAY),
                (5, 12, Decimal("250"), 999),
            ]),
            _scalars([]),
            _scalars([]),
        )
        result = await import_plan(
            db,
            [{"collector_id": 5, "year": 2026, "month": 3, "target_amount": "2000"}],
            user_id=1,
        )

        assert result.imported == 1
        assert result.reports_refreshed == 1
        target = _added(db, CollectorMonthlyTarget)[0]
        assert target.loan_ids == [10, 11, 12]
        assert target.target_amount == Decimal("2000")
        report = _added(db, CollectorMonthlyReport)[0]
        assert report.collector_name == "Levan Gelashvili"
        assert report.opening_principal == Decimal("1750")
        assert report.total_loan_count == 3
        assert report.new_loan_count == 1
        assert report.promise_to_pay_count == 1
        assert report.monthly_plan == Decimal("2000")
        assert _added(db, AuditLog)[0].action == "plan_imported"
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_target_counted_as_duplicate(self):
        existing_target = SimpleNamespace(collector_id=5, year=2026, month=3)
        existing_report = CollectorMonthlyReport(
            collector_id=5, year=2026, month=3, status=ReportStatus.ACTIVE,
            monthly_plan=Decimal("100"), collected_amount=Decimal("40"),
        )
        db = _mock_db(
            _scalars([_user(5)]),
            _rows([]),
            _scalars([existing_target]),
            _scalars([existing_report]),
        )
        result = await import_plan(
            db, [{"collector_id": 5, "year": 2026, "month": 3, "target_amount": "900"}]
        )

        assert result.imported == 0
        assert result.duplicates == 1
        assert result.reports_refreshed == 1
        assert _added(db, CollectorMonthlyTarget) == []
        assert existing_report.monthly_plan == Decimal("900")
        assert existing_report.collected_amount == Decimal("40")

    @pytest.mark.asyncio
    async def test_frozen_report_untouched(self):
        frozen = CollectorMonthlyReport(
            collector_id=5, year=2025, month=12, status=ReportStatus.FROZEN,
            monthly_plan=Decimal("100"),
        )
        db = _mock_db(
            _scalars([_user(5)]),
            _rows([]),
            _scalars([]),
            _scalars([frozen]),
        )
        result = await import_plan(
            db, [{"collector_id": 5, "year": 2025, "month": 12, "target_amount": "900"}]
        )

        assert result.frozen_skipped == 1
        assert result.reports_refreshed == 0
        assert frozen.monthly_plan == Decimal("100")

    @pytest.mark.asyncio
    async def test_unknown_collector_is_invalid(self):
        db = _mock_db(_scalars([]), _rows([]), _scalars([]), _scalars([]))
        result = await import_plan(
            db, [{"collector_id": 8, "year": 2026, "month": 1, "target_amount": "10"}]
        )
        assert result.invalid == 1
        assert result.imported == 0
        assert "Collector 8" in result.errors[0]

    @pytest.mark.asyncio
    async def test_nothing_valid_skips_database(self):
        db = _mock_db()
        result = await import_plan(db, [{"collector_id": 0}])
        assert result.invalid == 1
        db.execute.assert_not_awaited()
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_failure(self):
        db = _mock_db(_scalars([_user(5)]), _rows([]), _scalars([]), _scalars([]))
        db.commit.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))
        with pytest.raises(UpstreamError):
            await import_plan(
                db, [{"collector_id": 5, "year": 2026, "month": 3, "target_amount": "10"}]
            )
        db.rollback.assert_awaited_once()
