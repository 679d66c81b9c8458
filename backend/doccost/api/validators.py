from __future__ import annotations

import re
from typing import List, Tuple
from uuid import UUID

from doccost.domain.money import MoneyError, amount_to_cents


class ApiValidationError(ValueError):
    """Raised when request payload validation fails."""


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


def parse_price(raw_price: object) -> int:
    try:
        return amount_to_cents(raw_price)
    except MoneyError as e:
        raise ApiValidationError(f"'price_per_page' is invalid: {e}") from e


def parse_payment_amount(raw_amount: object) -> int:
    try:
        return amount_to_cents(raw_amount, allow_zero=False)
    except MoneyError as e:
        raise ApiValidationError(f"'amount' is invalid: {e}") from e


def parse_payer_names(raw_names: object) -> List[str]:
    """
    Optional list of payer names for a batch save. Duplicates
    (case-insensitive) and blanks are rejected.
    """
    if not isinstance(raw_names, list):
        raise ApiValidationError("'payers' must be a list of names.")

    names: List[str] = []
    seen: set[str] = set()
    for idx, raw in enumerate(raw_names):
        if not isinstance(raw, str) or not raw.strip():
            raise ApiValidationError(f"Payer at index {idx} must be a non-empty name.")
        key = raw.strip().lower()
        if key in seen:
            raise ApiValidationError(f"Payer '{raw.strip()}' is listed more than once.")
        seen.add(key)
        names.append(raw.strip())
    return names


def parse_credentials(data: object) -> Tuple[str, str]:
    if not isinstance(data, dict):
        raise ApiValidationError("Request body must be a JSON object.")

    email = data.get("email")
    password = data.get("password")
    if not isinstance(email, str) or not _EMAIL_RE.match(email.strip()):
        raise ApiValidationError("A valid 'email' is required.")
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ApiValidationError(f"'password' must be at least {MIN_PASSWORD_LENGTH} characters.")
    return email.strip().lower(), password


def parse_share_ids(raw_ids: object) -> List[str]:
    if not isinstance(raw_ids, list) or not raw_ids:
        raise ApiValidationError("'share_ids' must be a non-empty list of share ids.")

    share_ids: List[str] = []
    for sid in raw_ids:
        if not isinstance(sid, str) or not is_uuid(sid):
            raise ApiValidationError("Each share id must be a valid UUID string.")
        if sid not in share_ids:
            share_ids.append(sid)
    return share_ids
