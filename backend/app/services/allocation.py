"""Payment allocation engine.

Every balance change of a loan flows through this module.  The fundamental
invariant is: **current_debt == principal + interest + penalty + other_fee +
legal_charges** for every snapshot the engine reads or produces.

Snapshots are immutable values.  The engine never touches the database; the
payments service persists what it returns (supersede the old snapshot, insert
the new one, write the transaction and balance-history rows) in one unit.

Payment waterfall (fixed, deterministic):

    other_fee → penalty → interest → principal → legal_charges

Overpayment: when a payment exceeds current_debt the excess is parked in the
penalty bucket first (raising current_debt by the excess), and the payment is
then applied to that parked snapshot.
"""

import enum
import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from app.errors import ConsistencyError, ValidationError
from app.models.collection import ChargeClass, classify_charge_type

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

BUCKETS = ("principal", "interest", "penalty", "other_fee", "legal_charges")
PAYMENT_WATERFALL = ("other_fee", "penalty", "interest", "principal", "legal_charges")

# Transaction breakdown column for each bucket
TRANSACTION_COLUMNS = {
    "principal": "principal",
    "interest": "interest",
    "penalty": "penalty",
    "other_fee": "fees",
    "legal_charges": "legal",
}


class AllocationMode(str, enum.Enum):
    PAYMENT = "PAYMENT"
    CHARGE = "CHARGE"


def to_money(value: Any) -> Decimal:
    """Coerce a DB/JSON amount to a two-place Decimal. ``None`` is not money."""
    if value is None:
        raise ValidationError("Amount is required")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except ArithmeticError:
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BalanceSnapshot:
    principal: Decimal
    interest: Decimal
    penalty: Decimal
    other_fee: Decimal
    legal_charges: Decimal
    current_debt: Decimal
    agreement_min: Decimal | None = None

    @classmethod
    def from_buckets(
        cls,
        *,
        principal: Any = ZERO,
        interest: Any = ZERO,
        penalty: Any = ZERO,
        other_fee: Any = ZERO,
        legal_charges: Any = ZERO,
        agreement_min: Any = None,
    ) -> "BalanceSnapshot":
        """Build a snapshot whose current_debt is the bucket sum."""
        buckets = {
            "principal": to_money(principal),
            "interest": to_money(interest),
            "penalty": to_money(penalty),
            "other_fee": to_money(other_fee),
            "legal_charges": to_money(legal_charges),
        }
        return cls(
            **buckets,
            current_debt=sum(buckets.values(), ZERO),
            agreement_min=None if agreement_min is None else to_money(agreement_min),
        )

    @classmethod
    def from_row(cls, row: Any) -> "BalanceSnapshot":
        """Read a ``LoanRemaining`` row (or anything with the same attributes)."""
        return cls(
            principal=to_money(row.principal),
            interest=to_money(row.interest),
            penalty=to_money(row.penalty),
            other_fee=to_money(row.other_fee),
            legal_charges=to_money(row.legal_charges),
            current_debt=to_money(row.current_debt),
            agreement_min=None if row.agreement_min is None else to_money(row.agreement_min),
        )

    @property
    def bucket_total(self) -> Decimal:
        return sum((getattr(self, b) for b in BUCKETS), ZERO)

    @property
    def payable_debt(self) -> Decimal:
        """Amount quoted to a payer: a positive agreement_min overrides current_debt."""
        if self.agreement_min is not None and self.agreement_min > 0:
            return self.agreement_min
        return self.current_debt

    def buckets(self) -> dict[str, Decimal]:
        return {b: getattr(self, b) for b in BUCKETS}

    def as_row_values(self) -> dict[str, Decimal | None]:
        values: dict[str, Decimal | None] = dict(self.buckets())
        values["current_debt"] = self.current_debt
        values["agreement_min"] = self.agreement_min
        return values


@dataclass(frozen=True)
class AllocationResult:
    mode: AllocationMode
    amount: Decimal
    applied: dict[str, Decimal]
    new_snapshot: BalanceSnapshot
    # Set only when an overpayment was parked in penalty before applying
    parked_snapshot: BalanceSnapshot | None = None

    @property
    def new_current_debt(self) -> Decimal:
        return self.new_snapshot.current_debt

    @property
    def closes_loan(self) -> bool:
        return self.mode == AllocationMode.PAYMENT and self.new_snapshot.current_debt == ZERO

    def transaction_breakdown(self) -> dict[str, Decimal]:
        """Applied amounts keyed by ``Transaction`` column name."""
        return {TRANSACTION_COLUMNS[b]: self.applied.get(b, ZERO) for b in BUCKETS}


# ---------------------------------------------------------------------------
# Invariant
# ---------------------------------------------------------------------------

def verify_snapshot(snapshot: BalanceSnapshot, *, loan_id: int | None = None) -> BalanceSnapshot:
    """Raise ConsistencyError if the snapshot breaks the bucket-sum invariant."""
    negative = [b for b in BUCKETS if getattr(snapshot, b) < 0]
    if negative or snapshot.current_debt != snapshot.bucket_total:
        logger.critical(
            "Balance invariant violated for loan %s: buckets=%s current_debt=%s negative=%s",
            loan_id, snapshot.buckets(), snapshot.current_debt, negative,
        )
        raise ConsistencyError(
            f"Balance snapshot for loan {loan_id} is inconsistent: "
            f"current_debt={snapshot.current_debt}, bucket sum={snapshot.bucket_total}"
        )
    return snapshot


def _positive_amount(amount: Any) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise ValidationError("Amount must be greater than 0")
    return value


# ---------------------------------------------------------------------------
# Reductions
# ---------------------------------------------------------------------------

def apply_reductions(
    buckets: dict[str, Decimal], amount: Decimal
) -> tuple[dict[str, Decimal], dict[str, Decimal], Decimal]:
    """Consume *amount* from *buckets* in waterfall order.

    Returns (new_buckets, applied_per_bucket, unconsumed_remainder).  No bucket
    ever goes below zero.
    """
    new_buckets = dict(buckets)
    applied: dict[str, Decimal] = {b: ZERO for b in BUCKETS}
    remaining = amount
    for bucket in PAYMENT_WATERFALL:
        if remaining <= 0:
            break
        take = min(new_buckets[bucket], remaining)
        if take <= 0:
            continue
        new_buckets[bucket] -= take
        applied[bucket] = take
        remaining -= take
    return new_buckets, applied, remaining


def park_overpayment(snapshot: BalanceSnapshot, amount: Any) -> BalanceSnapshot:
    """Move the part of *amount* above current_debt into the penalty bucket.

    Returns *snapshot* unchanged when there is no overpayment.
    """
    value = _positive_amount(amount)
    excess = value - snapshot.current_debt
    if excess <= 0:
        return snapshot
    return replace(
        snapshot,
        penalty=snapshot.penalty + excess,
        current_debt=snapshot.current_debt + excess,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def allocate_payment(
    snapshot: BalanceSnapshot, amount: Any, *, loan_id: int | None = None
) -> AllocationResult:
    """Apply a payment to *snapshot* and return the resulting balances.

    The sum of the applied amounts always equals the payment amount.
    """
    value = _positive_amount(amount)
    verify_snapshot(snapshot, loan_id=loan_id)

    parked = park_overpayment(snapshot, value)
    base = parked

    new_buckets, applied, remaining = apply_reductions(base.buckets(), value)
    if remaining != 0:
        # park_overpayment guarantees the buckets cover the payment
        raise ConsistencyError(f"Payment of {value} left {remaining} unallocated for loan {loan_id}")

    agreement_min = base.agreement_min
    if agreement_min is not None:
        agreement_min = max(agreement_min - value, ZERO)

    new_snapshot = BalanceSnapshot(
        **new_buckets,
        current_debt=base.current_debt - value,
        agreement_min=agreement_min,
    )
    verify_snapshot(new_snapshot, loan_id=loan_id)

    return AllocationResult(
        mode=AllocationMode.PAYMENT,
        amount=value,
        applied=applied,
        new_snapshot=new_snapshot,
        parked_snapshot=parked if parked is not snapshot else None,
    )


def apply_charge(
    snapshot: BalanceSnapshot,
    amount: Any,
    charge_type_id: int,
    *,
    loan_id: int | None = None,
) -> AllocationResult:
    """Add a court/execution fee to legal_charges or an other/post/registry fee to other_fee."""
    value = _positive_amount(amount)
    verify_snapshot(snapshot, loan_id=loan_id)

    charge_class = classify_charge_type(charge_type_id)
    if charge_class is None:
        raise ValidationError(f"Charge type {charge_type_id} cannot be added to a balance")
    bucket = "legal_charges" if charge_class == ChargeClass.LEGAL else "other_fee"

    new_buckets = snapshot.buckets()
    new_buckets[bucket] += value
    agreement_min = snapshot.agreement_min
    if agreement_min is not None:
        agreement_min += value

    new_snapshot = BalanceSnapshot(
        **new_buckets,
        current_debt=snapshot.current_debt + value,
        agreement_min=agreement_min,
    )
    verify_snapshot(new_snapshot, loan_id=loan_id)

    applied = {b: ZERO for b in BUCKETS}
    applied[bucket] = value
    return AllocationResult(
        mode=AllocationMode.CHARGE,
        amount=value,
        applied=applied,
        new_snapshot=new_snapshot,
    )


def allocate(
    mode: AllocationMode,
    amount: Any,
    snapshot: BalanceSnapshot,
    *,
    charge_type_id: int | None = None,
    loan_id: int | None = None,
) -> AllocationResult:
    """Dispatch on *mode*; CHARGE requires *charge_type_id*."""
    if mode == AllocationMode.PAYMENT:
        return allocate_payment(snapshot, amount, loan_id=loan_id)
    if charge_type_id is None:
        raise ValidationError("charge_type_id is required for a charge")
    return apply_charge(snapshot, amount, charge_type_id, loan_id=loan_id)


def reverse_payment(
    snapshot: BalanceSnapshot,
    amount: Any,
    breakdown: dict[str, Any],
    *,
    loan_id: int | None = None,
) -> BalanceSnapshot:
    """Add a reversed payment back into the buckets it was taken from.

    *breakdown* is keyed by Transaction column name (``fees``, ``legal``, ...).
    """
    value = _positive_amount(amount)
    verify_snapshot(snapshot, loan_id=loan_id)

    returned = {b: to_money(breakdown.get(TRANSACTION_COLUMNS[b]) or ZERO) for b in BUCKETS}
    if sum(returned.values(), ZERO) != value:
        raise ConsistencyError(
            f"Transaction breakdown for loan {loan_id} does not add up to its amount {value}"
        )

    new_buckets = {b: getattr(snapshot, b) + returned[b] for b in BUCKETS}
    agreement_min = snapshot.agreement_min
    if agreement_min is not None:
        agreement_min += value

    new_snapshot = BalanceSnapshot(
        **new_buckets,
        current_debt=snapshot.current_debt + value,
        agreement_min=agreement_min,
    )
    return verify_snapshot(new_snapshot, loan_id=loan_id)


def settle_to_agreement_min(
    snapshot: BalanceSnapshot, agreement_min: Any, *, loan_id: int | None = None
) -> BalanceSnapshot:
    """Rebase the balance onto a committee-approved settlement figure.

    A lower figure is removed with the payment waterfall; a higher one is
    added to penalty.  current_debt and agreement_min both become the figure.
    """
    target = to_money(agreement_min)
    if target < 0:
        raise ValidationError("Agreement minimum cannot be negative")
    verify_snapshot(snapshot, loan_id=loan_id)

    difference = snapshot.current_debt - target
    new_buckets = snapshot.buckets()
    if difference > 0:
        new_buckets, _, remaining = apply_reductions(new_buckets, difference)
        if remaining > 0:
            raise ValidationError(
                "Cannot reduce debt: the balance buckets do not cover the reduction"
            )
    elif difference < 0:
        new_buckets["penalty"] += -difference

    new_snapshot = BalanceSnapshot(
        **new_buckets,
        current_debt=target,
        agreement_min=target,
    )
    return verify_snapshot(new_snapshot, loan_id=loan_id)
