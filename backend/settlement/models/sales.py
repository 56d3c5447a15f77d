from __future__ import annotations

from ..extensions import db
from ..money_utils import format_amount
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    Completed, paid sale.

    WHY: The Sale row is only created after the payment has succeeded, so
    every stored sale is final. There is no draft or void lifecycle here.

    IMMUTABLE: Header and lines are written once in the checkout transaction.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable invoice number (e.g., "INV-20260301-0007-4821")
    invoice_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    operator_id = db.Column(db.String(64), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    subtotal = db.Column(db.Numeric(18, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(18, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(18, 2), nullable=False)
    total = db.Column(db.Numeric(18, 2), nullable=False)
    amount_tendered = db.Column(db.Numeric(18, 2), nullable=False)
    change_due = db.Column(db.Numeric(18, 2), nullable=False, default=0)

    points_earned = db.Column(db.Integer, nullable=False, default=0)

    # Idempotency key supplied by the till; re-submits return the original sale
    client_request_id = db.Column(db.String(64), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    payment_method = db.relationship("PaymentMethod")
    lines = db.relationship("SaleLine", backref="sale", lazy=True, order_by="SaleLine.line_number")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "operator_id": self.operator_id,
            "customer_id": self.customer_id,
            "payment_method_id": self.payment_method_id,
            "status": self.status,
            "subtotal": format_amount(self.subtotal),
            "tax_amount": format_amount(self.tax_amount),
            "discount_amount": format_amount(self.discount_amount),
            "total": format_amount(self.total),
            "amount_tendered": format_amount(self.amount_tendered),
            "change_due": format_amount(self.change_due),
            "points_earned": self.points_earned,
            "client_request_id": self.client_request_id,
            "created_at": to_utc_z(self.created_at),
        }


class SaleLine(db.Model):
    """
    Line item snapshot: name, price and tax rate as sold.

    line_total == unit_price * quantity + tax_amount - discount_amount
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line_number"),
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(18, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(7, 4), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(18, 2), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": format_amount(self.unit_price),
            "tax_rate": str(self.tax_rate),
            "tax_amount": format_amount(self.tax_amount),
            "discount_amount": format_amount(self.discount_amount),
            "line_total": format_amount(self.line_total),
        }


class PaymentMethod(db.Model):
    """
    Tender option shown at the till.

    category drives settlement routing (cash, card, mobile, other). Rows
    created before categories existed have category NULL and are routed by
    display name.
    """
    __tablename__ = "payment_methods"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    category = db.Column(db.String(16), nullable=True)  # cash, card, mobile, other
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentRecord(db.Model):
    """
    Settled payment for a sale (one per sale).

    SECURITY: Card payments store only the gateway token and the last four
    digits. Mobile money stores the masked payer phone.
    """
    __tablename__ = "payment_records"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_payment_records_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)

    payment_type = db.Column(db.String(16), nullable=False)  # cash, card, mobile, other
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    processor_reference = db.Column(db.String(64), nullable=True, index=True)

    card_token = db.Column(db.String(128), nullable=True)
    card_last_four = db.Column(db.String(4), nullable=True)
    masked_phone = db.Column(db.String(32), nullable=True)

    # Unrecognized method that was settled as cash
    audit_flag = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("payment", uselist=False, lazy=True))
    payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "payment_method_id": self.payment_method_id,
            "payment_type": self.payment_type,
            "amount": format_amount(self.amount),
            "processor_reference": self.processor_reference,
            "card_last_four": self.card_last_four,
            "masked_phone": self.masked_phone,
            "audit_flag": self.audit_flag,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentAttempt(db.Model):
    """
    Append-only payment audit trail.

    WHY: A declined or failed charge leaves no Sale behind, so the attempt
    itself is the only record of what happened at the till.
    """
    __tablename__ = "payment_attempts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)
    payment_type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, index=True)  # initiated, completed, failed, refunded
    processor_reference = db.Column(db.String(64), nullable=True)
    error = db.Column(db.String(255), nullable=True)
    operator_id = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "payment_method_id": self.payment_method_id,
            "payment_type": self.payment_type,
            "amount": format_amount(self.amount),
            "status": self.status,
            "processor_reference": self.processor_reference,
            "error": self.error,
            "operator_id": self.operator_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class InvoiceSequence(db.Model):
    """
    Date-coded invoice counter.

    WHY: Supplies the readable base of an invoice number; uniqueness is
    guaranteed separately by InvoiceNumberReservation.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sequence_date = db.Column(db.String(8), nullable=False, unique=True)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class InvoiceNumberReservation(db.Model):
    """Permanent uniqueness guard for issued invoice numbers."""
    __tablename__ = "invoice_number_reservations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)
    reserved_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
