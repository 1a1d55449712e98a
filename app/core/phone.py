"""Kenyan MSISDN normalization shared by M-Pesa linking and the Daraja webhook."""

import re

_NON_DIGITS = re.compile(r"\D")


def normalize_phone_number(phone: str | int | None) -> str | None:
    """Normalizes a phone number to the `254XXXXXXXXX` form Daraja reports.

    Accepted shapes (after stripping every non-digit, which also drops a
    leading `+`): `0` + 9 digits, `254` + 9 digits, or a bare 9-digit
    subscriber number not starting with `0`. Anything else returns None.
    """
    if phone is None:
        return None
    digits = _NON_DIGITS.sub("", str(phone))
    if not digits:
        return None

    if digits.startswith("0") and len(digits) == 10:
        return "254" + digits[1:]
    if digits.startswith("254") and len(digits) == 12:
        return digits
    if len(digits) == 9 and not digits.startswith("0"):
        return "254" + digits
    return None


def mask_identifier(value: str | int | None) -> str:
    """Masks an account identifier down to its last 4 characters."""
    text = str(value or "")
    return f"****{text[-4:]}" if text else "****"
