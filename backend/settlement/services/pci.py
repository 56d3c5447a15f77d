# Overview: Card and phone data helpers; nothing here touches the database.

from __future__ import annotations

import hashlib
import hmac
import re

from flask import current_app

_NON_DIGITS = re.compile(r"\D")
_PHONE = re.compile(r"^\+?\d{9,15}$")


def digits_only(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def luhn_valid(card_number: str | None) -> bool:
    digits = digits_only(card_number)
    if not 12 <= len(digits) <= 19:
        return False
    total = 0
    for index, char in enumerate(reversed(digits)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def tokenize_card(card_number: str) -> str:
    """Keyed, irreversible token for a PAN. Same card -> same token."""
    key = current_app.config["SECRET_KEY"].encode("utf-8")
    digest = hmac.new(key, digits_only(card_number).encode("utf-8"), hashlib.sha256).hexdigest()
    return f"tok_{digest[:32]}"


def last_four(card_number: str) -> str:
    return digits_only(card_number)[-4:]


def normalize_phone(phone: str | None) -> str | None:
    if phone is None:
        return None
    cleaned = re.sub(r"[\s\-()]", "", phone)
    return cleaned if _PHONE.match(cleaned) else None


def mask_phone(phone: str) -> str:
    visible = phone[-4:]
    return "*" * (len(phone) - 4) + visible
