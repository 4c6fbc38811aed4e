"""Tests for per-role row visibility."""

from types import SimpleNamespace

from app.models.user import UserRole
from app.services.scoping import (
    LegacyPlanReportScope,
    LoanScope,
    PlanTargetScope,
    TransactionScope,
)


def _user(role, user_id=5):
    return SimpleNamespace(id=user_id, role=role)


class TestScopes:
    def test_admin_and_manager_unrestricted(self):
        for role in (UserRole.ADMIN, UserRole.MANAGER):
            for scope in (LoanScope, TransactionScope, PlanTargetScope, LegacyPlanReportScope):
                assert str(scope.scope_for_user(_user(role))) == "true"

    def test_collector_sees_assigned_loans(self):
        clause = str(LoanScope.scope_for_user(_user(UserRole.COLLECTOR)))
        assert "loans.id IN" in clause
        assert "loan_assignments" in clause

    def test_lawyer_transactions_follow_assignments(self):
        clause = str(TransactionScope.scope_for_user(_user(UserRole.LAWYER)))
        assert "transactions.loan_id IN" in clause

    def test_collector_sees_own_targets(self):
        clause = str(PlanTargetScope.scope_for_user(_user(UserRole.COLLECTOR)))
        assert "collector_monthly_targets.collector_id" in clause
        clause = str(LegacyPlanReportScope.scope_for_user(_user(UserRole.COLLECTOR)))
        assert "collector_monthly_reports.collector_id" in clause

    def test_lawyer_sees_no_plan_rows(self):
        assert str(PlanTargetScope.scope_for_user(_user(UserRole.LAWYER))) == "false"
        assert str(LegacyPlanReportScope.scope_for_user(_user(UserRole.LAWYER))) == "false"
