"""Row-level visibility per entity.

Each scope turns a user into a SQLAlchemy predicate for its own entity.
Admins and managers see every row; collectors and lawyers see what they are
assigned.
"""

from sqlalchemy import ColumnElement, false, select, true

from app.models.loan import Loan, LoanAssignment
from app.models.payment import Transaction
from app.models.report import CollectorMonthlyReport, CollectorMonthlyTarget
from app.models.user import User, UserRole

UNRESTRICTED_ROLES = frozenset({UserRole.ADMIN, UserRole.MANAGER})


def _assigned_loan_ids(user: User):
    return select(LoanAssignment.loan_id).where(
        LoanAssignment.user_id == user.id,
        LoanAssignment.is_active.is_(True),
    )


class LoanScope:
    @staticmethod
    def scope_for_user(user: User) -> ColumnElement[bool]:
        if user.role in UNRESTRICTED_ROLES:
            return true()
        return Loan.id.in_(_assigned_loan_ids(user))


class TransactionScope:
    @staticmethod
    def scope_for_user(user: User) -> ColumnElement[bool]:
        if user.role in UNRESTRICTED_ROLES:
            return true()
        return Transaction.loan_id.in_(_assigned_loan_ids(user))


class PlanTargetScope:
    @staticmethod
    def scope_for_user(user: User) -> ColumnElement[bool]:
        if user.role in UNRESTRICTED_ROLES:
            return true()
        if user.role == UserRole.COLLECTOR:
            return CollectorMonthlyTarget.collector_id == user.id
        return false()


class LegacyPlanReportScope:
    @staticmethod
    def scope_for_user(user: User) -> ColumnElement[bool]:
        if user.role in UNRESTRICTED_ROLES:
            return true()
        if user.role == UserRole.COLLECTOR:
            return CollectorMonthlyReport.collector_id == user.id
        return false()
