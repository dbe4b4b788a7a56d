"""
Gateway instance naming and phone number normalization.

Pure functions only; safe to call from the reducer.
"""

from __future__ import annotations

import re

from errors import InvalidInput
from policy import (
    INSTANCE_NAME_PREFIX,
    INSTANCE_NAME_STORE_ID_CHARS,
    PHONE_MAX_DIGITS,
    PHONE_MIN_DIGITS,
    STORE_PHONE_COUNTRY_PREFIX,
)

_NON_DIGITS = re.compile(r"\D")


def instance_name_for(store_id: str) -> str:
    """
    Deterministic gateway instance name for a store.

    Uses the stable store id, so renaming the store never breaks pairing.
    """
    store_id = (store_id or "").strip()
    if not store_id:
        raise InvalidInput("store_id is required")
    return f"{INSTANCE_NAME_PREFIX}{store_id[:INSTANCE_NAME_STORE_ID_CHARS]}"


def phone_digits(raw: str | None) -> str:
    return _NON_DIGITS.sub("", raw or "")


def is_valid_phone(digits: str) -> bool:
    return digits.isdigit() and PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS


def parse_phone(raw: str | None) -> str:
    """
    Normalize a user-supplied phone number to digits.

    Raises InvalidInput when nothing usable was supplied.
    """
    digits = phone_digits(raw)
    if not digits:
        raise InvalidInput("Phone number is required")
    if not is_valid_phone(digits):
        raise InvalidInput(
            f"Phone number must have between {PHONE_MIN_DIGITS} and "
            f"{PHONE_MAX_DIGITS} digits"
        )
    return digits


def local_phone(raw: str | None) -> str:
    """
    Store phone as shown in the pairing form: digits only, without the
    country prefix.
    """
    digits = phone_digits(raw)
    if digits.startswith(STORE_PHONE_COUNTRY_PREFIX):
        digits = digits[len(STORE_PHONE_COUNTRY_PREFIX):]
    return digits
