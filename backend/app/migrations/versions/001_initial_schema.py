"""Initial servicing schema: loans, balances, transactions, activity, plan reports.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-03-02

"""

from alembic import op
import sqlalchemy as sa


revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(14, 2)


def _timestamps(*, updated: bool = False, deleted: bool = False) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()))
    if deleted:
        cols.append(sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True))
    return cols


def _buckets() -> list[sa.Column]:
    return [
        sa.Column(name, MONEY, nullable=False)
        for name in ("principal", "interest", "penalty", "other_fee", "legal_charges", "current_debt")
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("role", sa.Enum("ADMIN", "MANAGER", "COLLECTOR", "LAWYER", name="userrole"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "debtors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("id_number", sa.String(30), nullable=False, index=True),
        sa.Column("status_id", sa.Integer(), nullable=True),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "debtor_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("debtor_id", sa.Integer(), sa.ForeignKey("debtors.id"), nullable=False, index=True),
        sa.Column("old_status_id", sa.Integer(), nullable=True),
        sa.Column("new_status_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "loans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("case_id", sa.String(50), nullable=False, unique=True, index=True),
        sa.Column("debtor_id", sa.Integer(), sa.ForeignKey("debtors.id"), nullable=False, index=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("principal", MONEY, nullable=False),
        sa.Column("interest", MONEY, nullable=False),
        sa.Column("penalty", MONEY, nullable=False),
        sa.Column("other_fee", MONEY, nullable=False),
        sa.Column("legal_charges", MONEY, nullable=False),
        sa.Column("total_debt", MONEY, nullable=False),
        sa.Column("status_id", sa.Integer(), nullable=False, index=True),
        sa.Column("act_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=True, deleted=True),
    )

    op.create_table(
        "loan_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("role", sa.Enum("COLLECTOR", "LAWYER", name="assignmentrole"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("unassigned_at", sa.DateTime(timezone=True), nullable=True),
    )

    # Balance snapshots: one active row per loan, superseded rows keep deleted_at
    op.create_table(
        "loan_remaining",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        *_buckets(),
        sa.Column("agreement_min", MONEY, nullable=True),
        *_timestamps(deleted=True),
    )
    op.create_index(
        "uq_loan_remaining_active", "loan_remaining", ["loan_id"],
        unique=True, postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "loan_balance_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column(
            "source_type",
            sa.Enum("PAYMENT", "CHARGE", "REVERSAL", "SETTLEMENT", name="balancesource"),
            nullable=False,
        ),
        sa.Column("source_id", sa.Integer(), nullable=True, index=True),
        *_buckets(),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("public_id", sa.String(36), nullable=False, unique=True, index=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("rate", sa.Numeric(12, 6), nullable=False, server_default="1"),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("transaction_channel_account_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("principal", MONEY, nullable=False, server_default="0"),
        sa.Column("interest", MONEY, nullable=False, server_default="0"),
        sa.Column("penalty", MONEY, nullable=False, server_default="0"),
        sa.Column("fees", MONEY, nullable=False, server_default="0"),
        sa.Column("legal", MONEY, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )

    op.create_table(
        "transaction_reversals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=False, unique=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "transaction_user_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "loan_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("old_status_id", sa.Integer(), nullable=True),
        sa.Column("new_status_id", sa.Integer(), nullable=False),
        sa.Column("changed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("source_transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=True),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "online_payment_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("txn_id", sa.String(100), nullable=True, index=True),
        sa.Column("command", sa.String(10), nullable=False),
        sa.Column("case_id", sa.String(50), nullable=False),
        sa.Column("amount", MONEY, nullable=True),
        sa.Column("result_code", sa.Integer(), nullable=False),
        sa.Column("result_message", sa.String(255), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id"), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "uq_online_payment_applied_txn", "online_payment_log", ["provider", "txn_id"],
        unique=True, postgresql_where=sa.text("command = 'PAY' AND result_code = 0"),
    )

    # Collector activity
    op.create_table(
        "sms_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True, index=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", sa.Enum("SUCCESS", "FAILED", name="smsstatus"), nullable=False),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "loan_marks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True, index=True),
        sa.Column("mark_id", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "loan_comments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True, index=True),
        sa.Column("comment", sa.Text(), nullable=False),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "committee_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("requester_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("request_text", sa.Text(), nullable=True),
        sa.Column("agreement_min_amount", MONEY, nullable=True),
        sa.Column(
            "status",
            sa.Enum("PENDING", "APPROVED", "REJECTED", name="committeestatus"),
            nullable=False,
        ),
        sa.Column("responded_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "charge_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(50), nullable=False),
    )
    op.bulk_insert(
        sa.table("charge_types", sa.column("id", sa.Integer()), sa.column("title", sa.String())),
        [
            {"id": 1, "title": "Court fee"},
            {"id": 2, "title": "Execution fee"},
            {"id": 3, "title": "Other fee"},
            {"id": 4, "title": "Post fee"},
            {"id": 5, "title": "Registry fee"},
        ],
    )

    op.create_table(
        "charges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("charge_type_id", sa.Integer(), sa.ForeignKey("charge_types.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("charge_date", sa.Date(), nullable=False),
        sa.Column("transaction_channel_account_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("collector_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("lawyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(deleted=True),
    )

    op.create_table(
        "loan_legal_stages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=False, index=True),
        sa.Column("legal_stage_id", sa.Integer(), nullable=False, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(deleted=True),
    )

    # Plan reporting
    op.create_table(
        "collector_monthly_targets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("collector_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("target_amount", MONEY, nullable=False),
        sa.Column("year", sa.Integer(), nullable=False, index=True),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("loan_ids", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("collector_id", "year", "month", name="uq_collector_target_period"),
    )

    int_columns = [
        "paid_loan_count", "new_loan_count", "communicated_count", "unreachable_count",
        "agreement_count", "agreement_cancelled_count", "refuse_to_pay_count",
        "promise_to_pay_count", "total_loan_count", "call_count", "total_call_duration_sec",
        "sms_count", "mark_count", "comment_count", "committee_request_count",
        "inactive_over_40_days_count", "debtor_status_count", "total_activities",
        "court_case_count", "execution_case_count",
    ]
    money_columns = [
        "monthly_plan", "adjusted_plan", "opening_principal", "collected_amount",
        "total_legal_charges", "total_other_charges", "court_principal_sum",
        "execution_principal_sum",
    ]
    op.create_table(
        "collector_monthly_reports",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("collector_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("collector_name", sa.String(200), nullable=True),
        sa.Column("year", sa.Integer(), nullable=False, index=True),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("status", sa.Enum("ACTIVE", "FROZEN", name="reportstatus"), nullable=False),
        *[sa.Column(name, MONEY, nullable=False, server_default="0") for name in money_columns],
        sa.Column("collection_rate_percent", sa.Numeric(8, 2), nullable=False, server_default="0"),
        sa.Column("payment_success_rate", sa.Numeric(8, 2), nullable=False, server_default="0"),
        *[sa.Column(name, sa.Integer(), nullable=False, server_default="0") for name in int_columns],
        sa.Column("generated_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(updated=True),
        sa.UniqueConstraint("collector_id", "year", "month", name="uq_collector_report_period"),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False, index=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id"), nullable=True, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "severity",
            sa.Enum("INFO", "WARNING", "ERROR", "CRITICAL", name="errorseverity"),
            nullable=False,
        ),
        sa.Column("error_type", sa.String(200), nullable=False),
        sa.Column("error_kind", sa.String(50), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("traceback", sa.Text(), nullable=True),
        sa.Column("module", sa.String(300), nullable=True),
        sa.Column("function_name", sa.String(200), nullable=True),
        sa.Column("line_number", sa.Integer(), nullable=True),
        sa.Column("request_method", sa.String(10), nullable=True),
        sa.Column("request_path", sa.String(500), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_time_ms", sa.Float(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    for table in (
        "error_logs", "audit_log", "collector_monthly_reports", "collector_monthly_targets",
        "loan_legal_stages", "charges", "charge_types", "committee_requests", "loan_comments",
        "loan_marks", "sms_history",
    ):
        op.drop_table(table)
    op.drop_index("uq_online_payment_applied_txn", table_name="online_payment_log")
    op.drop_table("online_payment_log")
    for table in (
        "loan_status_history", "transaction_user_assignments", "transaction_reversals",
        "transactions", "loan_balance_history",
    ):
        op.drop_table(table)
    op.drop_index("uq_loan_remaining_active", table_name="loan_remaining")
    for table in ("loan_remaining", "loan_assignments", "loans", "debtor_status_history", "debtors", "users"):
        op.drop_table(table)
    for enum_name in (
        "errorseverity", "reportstatus", "committeestatus", "smsstatus", "balancesource",
        "assignmentrole", "userrole",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
