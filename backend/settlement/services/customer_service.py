# Overview: Customer purchase aggregates updated after a completed sale.

from __future__ import annotations

from ..extensions import db
from ..models import Customer
from ..money_utils import quantize, to_decimal
from ..time_utils import utcnow
from .concurrency import lock_for_update


def update_customer_aggregates(customer_id: int, sale_total, *, visited_at=None) -> Customer | None:
    """
    Add a sale to a customer's lifetime totals.

    Flushes only; the caller owns the transaction. Returns None when the
    customer no longer exists.
    """
    customer = lock_for_update(
        db.session.query(Customer).filter_by(id=customer_id)
    ).first()
    if customer is None:
        return None

    customer.total_spent = quantize(to_decimal(customer.total_spent or 0) + to_decimal(sale_total))
    customer.total_visits = (customer.total_visits or 0) + 1
    customer.last_visit_at = visited_at or utcnow()
    db.session.flush()
    return customer
