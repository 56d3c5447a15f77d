from __future__ import annotations

from ..extensions import db
from ..money_utils import format_amount
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer with purchase aggregates.

    WHY: Lifetime value and visit tracking at the till. Aggregates are
    denormalized and updated when a sale completes.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    # Denormalized aggregates (updated when sales are completed)
    total_spent = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    total_visits = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "total_spent": format_amount(self.total_spent),
            "total_visits": self.total_visits,
            "last_visit_at": to_utc_z(self.last_visit_at) if self.last_visit_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class LoyaltyProgram(db.Model):
    """Earn-rate configuration: points per currency unit spent."""
    __tablename__ = "loyalty_programs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    points_per_currency = db.Column(db.Numeric(10, 4), nullable=False, default=1)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "points_per_currency": str(self.points_per_currency),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyAccount(db.Model):
    """
    Points balance for one customer in one program.

    current_points == total_points_earned - total_points_redeemed
    plus the net of manual adjustments.
    """
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "program_id", name="uq_loyalty_accounts_customer_program"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    program_id = db.Column(db.Integer, db.ForeignKey("loyalty_programs.id"), nullable=False, index=True)

    current_points = db.Column(db.Integer, nullable=False, default=0)
    total_points_earned = db.Column(db.Integer, nullable=False, default=0)
    total_points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    tier = db.Column(db.String(16), nullable=False, default="bronze")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_points_earned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("loyalty_accounts", lazy=True))
    program = db.relationship("LoyaltyProgram")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "program_id": self.program_id,
            "current_points": self.current_points,
            "total_points_earned": self.total_points_earned,
            "total_points_redeemed": self.total_points_redeemed,
            "tier": self.tier,
            "is_active": self.is_active,
            "last_points_earned_at": to_utc_z(self.last_points_earned_at) if self.last_points_earned_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of point events.

    TRANSACTION TYPES:
    - earn: Points earned from a sale
    - redeem: Points spent (negative)
    - adjustment: Manual correction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_account_occurred", "account_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("loyalty_accounts.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    points_balance_before = db.Column(db.Integer, nullable=False)
    points_balance_after = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)
    operator_id = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    account = db.relationship("LoyaltyAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "points_balance_before": self.points_balance_before,
            "points_balance_after": self.points_balance_after,
            "sale_id": self.sale_id,
            "reason": self.reason,
            "operator_id": self.operator_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
