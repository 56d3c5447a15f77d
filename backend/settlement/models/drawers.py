from __future__ import annotations

from ..extensions import db
from ..money_utils import format_amount
from ..time_utils import to_utc_z


DRAWER_OPEN = "open"
DRAWER_CLOSED = "closed"
DRAWER_RECONCILED = "reconciled"


class CashDrawer(db.Model):
    """
    Physical cash drawer accountability period.

    LIFECYCLE:
    - open: Cash movements are recorded against it
    - closed: Counted; current_balance holds the counted amount
    - reconciled: Discrepancy confirmed by a supervisor (terminal)

    DESIGN: At most one open drawer system-wide. Enforced by the service
    check and by a partial unique index on status = 'open'.

    IMMUTABLE: Transitions only move forward; a drawer is never re-opened.
    """
    __tablename__ = "cash_drawers"
    __table_args__ = (
        db.Index(
            "uq_cash_drawers_single_open",
            "status",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=DRAWER_OPEN, index=True)

    opening_balance = db.Column(db.Numeric(18, 2), nullable=False)
    current_balance = db.Column(db.Numeric(18, 2), nullable=False)
    expected_balance = db.Column(db.Numeric(18, 2), nullable=False)

    # current_balance - expected_balance; set at close, finalized at reconcile
    discrepancy = db.Column(db.Numeric(18, 2), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opened_by = db.Column(db.String(64), nullable=True)
    closed_by = db.Column(db.String(64), nullable=True)
    reconciled_by = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "opening_balance": format_amount(self.opening_balance),
            "current_balance": format_amount(self.current_balance),
            "expected_balance": format_amount(self.expected_balance),
            "discrepancy": format_amount(self.discrepancy),
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "reconciled_at": to_utc_z(self.reconciled_at) if self.reconciled_at else None,
            "opened_by": self.opened_by,
            "closed_by": self.closed_by,
            "reconciled_by": self.reconciled_by,
            "notes": self.notes,
            "version_id": self.version_id,
        }


class CashTransaction(db.Model):
    """
    Append-only cash movement within a drawer.

    TRANSACTION TYPES:
    - cash_in / deposit: add cash (positive amount)
    - cash_out / withdrawal: remove cash (stored negative)
    - adjustment: signed correction

    IMMUTABLE: balance_after == balance_before + amount.
    """
    __tablename__ = "cash_transactions"
    __table_args__ = (
        db.Index("ix_cash_transactions_drawer_occurred", "drawer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    drawer_id = db.Column(db.Integer, db.ForeignKey("cash_drawers.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Numeric(18, 2), nullable=False)  # signed
    description = db.Column(db.String(255), nullable=False)
    balance_before = db.Column(db.Numeric(18, 2), nullable=False)
    balance_after = db.Column(db.Numeric(18, 2), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    operator_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    drawer = db.relationship("CashDrawer", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "drawer_id": self.drawer_id,
            "transaction_type": self.transaction_type,
            "amount": format_amount(self.amount),
            "description": self.description,
            "balance_before": format_amount(self.balance_before),
            "balance_after": format_amount(self.balance_after),
            "sale_id": self.sale_id,
            "operator_id": self.operator_id,
            "notes": self.notes,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class CashDrawerAuditLog(db.Model):
    """Append-only log of drawer actions (opened, transaction_added, closed, reconciled)."""
    __tablename__ = "cash_drawer_audit_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    drawer_id = db.Column(db.Integer, db.ForeignKey("cash_drawers.id"), nullable=False, index=True)
    operator_id = db.Column(db.String(64), nullable=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    details = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    drawer = db.relationship("CashDrawer", backref=db.backref("audit_logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "drawer_id": self.drawer_id,
            "operator_id": self.operator_id,
            "action": self.action,
            "details": self.details,
            "occurred_at": to_utc_z(self.occurred_at),
        }
