"""Tests for the two-day collection event counter."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.services.plan_report.dedup import (
    DEDUP_WINDOW,
    build_transaction_data,
    count_collection_events,
)
from app.services.plan_report.records import CollectorTransaction

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _tx(hours: float, *, loan_id=1, user_id=7, amount="10", year=2026, month=3):
    return CollectorTransaction(
        user_id=user_id,
        year=year,
        month=month,
        loan_id=loan_id,
        amount=Decimal(amount),
        created_at=T0 + timedelta(hours=hours),
    )


# ── count_collection_events ───────────────────────

class TestCountCollectionEvents:
    def test_window_restarts_from_last_counted(self):
        stamps = [T0, T0 + timedelta(hours=47), T0 + timedelta(hours=90)]
        assert count_collection_events(stamps) == 2

    def test_beyond_window_counts_twice(self):
        assert count_collection_events([T0, T0 + timedelta(hours=49)]) == 2

    def test_single_payment(self):
        assert count_collection_events([T0]) == 1

    def test_empty(self):
        assert count_collection_events([]) == 0

    def test_exactly_48_hours_is_same_event(self):
        assert count_collection_events([T0, T0 + DEDUP_WINDOW]) == 1

    def test_unsorted_input(self):
        stamps = [T0 + timedelta(hours=90), T0, T0 + timedelta(hours=47)]
        assert count_collection_events(stamps) == 2

    def test_not_a_sliding_window(self):
        # Each step is under 48h from the previous one, but not from the counted one
        stamps = [T0 + timedelta(hours=h) for h in (0, 30, 60, 90)]
        assert count_collection_events(stamps) == 2


# ── build_transaction_data ────────────────────────

class TestBuildTransactionData:
    def test_counts_per_loan_are_summed(self):
        data = build_transaction_data([
            _tx(0, loan_id=1),
            _tx(10, loan_id=1),
            _tx(0, loan_id=2),
            _tx(100, loan_id=2),
        ])
        assert data.paid_counts[(7, 2026, 3)] == 3
        assert len(data.tx_map[(7, 2026, 3)]) == 4

    def test_periods_kept_apart(self):
        data = build_transaction_data([
            _tx(0, user_id=7),
            _tx(1, user_id=8),
            _tx(2, user_id=7, month=4),
        ])
        assert data.paid_counts == {(7, 2026, 3): 1, (8, 2026, 3): 1, (7, 2026, 4): 1}

    def test_transaction_without_loan_is_not_counted(self):
        data = build_transaction_data([_tx(0, loan_id=None)])
        assert data.paid_counts == {}
        assert len(data.tx_map[(7, 2026, 3)]) == 1

    def test_empty(self):
        data = build_transaction_data([])
        assert data.tx_map == {}
        assert data.paid_counts == {}
