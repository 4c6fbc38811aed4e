"""Two-day rule for counting collection events.

Several partial payments on one loan within 48 hours are credited to the
collector as a single successful collection.  The window restarts from the
last *counted* payment, not the last seen one: payments at hour 0, 47 and 90
count as two events.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from app.services.plan_report.records import CollectorTransaction

DEDUP_WINDOW = timedelta(hours=48)

# (collector_id, year, month)
PeriodKey = tuple[int, int, int]


def count_collection_events(timestamps: Iterable[datetime]) -> int:
    count = 0
    last_counted: datetime | None = None
    for ts in sorted(timestamps):
        if last_counted is None or ts - last_counted > DEDUP_WINDOW:
            count += 1
            last_counted = ts
    return count


@dataclass(frozen=True)
class TransactionData:
    # Attributions per collector period
    tx_map: dict[PeriodKey, list[CollectorTransaction]] = field(default_factory=dict)
    # Deduplicated paid-loan count per collector period
    paid_counts: dict[PeriodKey, int] = field(default_factory=dict)


def build_transaction_data(transactions: Iterable[CollectorTransaction]) -> TransactionData:
    """Group attributions by collector period and apply the two-day rule per loan."""
    tx_map: dict[PeriodKey, list[CollectorTransaction]] = defaultdict(list)
    per_loan: dict[tuple[int, int, int, int], list[datetime]] = defaultdict(list)

    for tx in transactions:
        period = (tx.user_id, tx.year, tx.month)
        tx_map[period].append(tx)
        if tx.loan_id is not None:
            per_loan[period + (tx.loan_id,)].append(tx.created_at)

    paid_counts: dict[PeriodKey, int] = defaultdict(int)
    for (user_id, year, month, _loan_id), stamps in per_loan.items():
        paid_counts[(user_id, year, month)] += count_collection_events(stamps)

    return TransactionData(tx_map=dict(tx_map), paid_counts=dict(paid_counts))
