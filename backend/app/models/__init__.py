"""SQLAlchemy models for the debtdesk servicing back office."""

from app.models.user import User, UserRole
from app.models.loan import (
    Loan, LoanStatusId, LoanStatusHistory, LoanAssignment, AssignmentRole,
    Debtor, DebtorStatusHistory, CLOSED_STATUS_IDS,
)
from app.models.balance import LoanRemaining, LoanBalanceHistory, BalanceSource
from app.models.payment import (
    Transaction, TransactionReversal, TransactionUserAssignment, OnlinePaymentLog,
)
from app.models.collection import (
    SmsHistory, SmsStatus, LoanMark, LoanComment, CommitteeRequest, CommitteeStatus,
    Charge, ChargeType, LoanLegalStage,
)
from app.models.report import CollectorMonthlyTarget, CollectorMonthlyReport, ReportStatus
from app.models.audit import AuditAction, AuditLog
from app.models.error_log import ErrorLog, ErrorSeverity

__all__ = [
    "User", "UserRole",
    "Loan", "LoanStatusId", "LoanStatusHistory", "LoanAssignment", "AssignmentRole",
    "Debtor", "DebtorStatusHistory", "CLOSED_STATUS_IDS",
    "LoanRemaining", "LoanBalanceHistory", "BalanceSource",
    "Transaction", "TransactionReversal", "TransactionUserAssignment", "OnlinePaymentLog",
    "SmsHistory", "SmsStatus", "LoanMark", "LoanComment", "CommitteeRequest", "CommitteeStatus",
    "Charge", "ChargeType", "LoanLegalStage",
    "CollectorMonthlyTarget", "CollectorMonthlyReport", "ReportStatus",
    "AuditAction", "AuditLog",
    "ErrorLog", "ErrorSeverity",
]
