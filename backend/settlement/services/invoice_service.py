# Overview: Invoice number allocation with retry-on-conflict and a timestamp fallback.

"""
Invoice Number Generator

WHY: Every sale needs a human-readable number that is unique forever,
even when two tills check out in the same millisecond.

DESIGN:
- Base comes from a date-coded sequence (INV-YYYYMMDD-NNNN)
- A random 4-digit suffix is appended
- The candidate is reserved in invoice_number_reservations inside a
  savepoint; a unique-key violation means another till took it, so retry
- Anything else (or running out of attempts) falls back to
  INV-<epoch millis>-<0..999> with a warning. This function never raises.
"""

from __future__ import annotations

import random
import time
from typing import Callable

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import InvoiceSequence, InvoiceNumberReservation
from ..time_utils import utcnow, epoch_millis


def _prefix() -> str:
    return current_app.config.get("INVOICE_PREFIX", "INV")


def next_invoice_base(*, pad: int = 4) -> str:
    """
    Allocate the next date-coded base, e.g. INV-20260301-0007.

    Same update-then-insert pattern as a document sequence: bump the row
    for today if it exists, otherwise create it.
    """
    sequence_date = utcnow().strftime("%Y%m%d")
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.sequence_date == sequence_date)
        .values(next_number=InvoiceSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(InvoiceSequence.next_number)
            .filter_by(sequence_date=sequence_date)
            .scalar()
        )
        next_num = current - 1
    else:
        # Raises IntegrityError if another till created today's row first;
        # the caller treats that like any other numbering conflict.
        with db.session.begin_nested():
            db.session.add(InvoiceSequence(sequence_date=sequence_date, next_number=2))
        next_num = 1

    return f"{_prefix()}-{sequence_date}-{next_num:0{pad}d}"


def _reserve(invoice_number: str) -> None:
    with db.session.begin_nested():
        db.session.add(InvoiceNumberReservation(invoice_number=invoice_number, reserved_at=utcnow()))


def fallback_invoice_number() -> str:
    return f"{_prefix()}-{epoch_millis()}-{random.randint(0, 999)}"


def generate_invoice_number(base_provider: Callable[[], str] | None = None) -> str:
    """
    Return a reserved, unique invoice number. Never raises.

    Args:
        base_provider: Callable returning the base string. Defaults to the
            date-coded sequence.
    """
    provider = base_provider or next_invoice_base
    attempts = int(current_app.config.get("INVOICE_MAX_ATTEMPTS", 3))
    delay = float(current_app.config.get("INVOICE_RETRY_DELAY_SECONDS", 0.1))

    for attempt in range(1, attempts + 1):
        try:
            candidate = f"{provider()}-{random.randint(1000, 9999)}"
            _reserve(candidate)
            return candidate
        except IntegrityError:
            current_app.logger.info("Invoice number conflict on attempt %s/%s", attempt, attempts)
            if attempt < attempts:
                time.sleep(delay)
        except Exception:
            current_app.logger.warning("Invoice number generation failed; using fallback", exc_info=True)
            break
    else:
        current_app.logger.warning("Invoice number conflicts exhausted %s attempts; using fallback", attempts)

    invoice_number = fallback_invoice_number()
    try:
        _reserve(invoice_number)
    except SQLAlchemyError:
        current_app.logger.warning("Could not reserve fallback invoice number %s", invoice_number, exc_info=True)
    return invoice_number
