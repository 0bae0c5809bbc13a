"""
Amount parsing for unclaimed-property listings.

Listings report values as a point amount (``$42.10``), a bound (``OVER $500``,
``UNDER $200``), a range (``$50 TO $75``) or the literal ``UNDISCLOSED``.
Every form is reduced to one dollar figure so results can be totalled.
"""

import re
from typing import Iterable, Optional

UNDISCLOSED_VALUE = 100.0
AMOUNT_NOT_SPECIFIED = "Amount not specified"

# Matches the amount forms as they appear inside free text.
AMOUNT_PATTERN = re.compile(
    r"(over\s+\$[\d,]+(?:\.\d+)?|under\s+\$[\d,]+(?:\.\d+)?"
    r"|\$[\d,]+(?:\.\d+)?[\s,]*to[\s,]*\$[\d,]+(?:\.\d+)?|\$[\d,]+(?:\.\d+)?)",
    re.IGNORECASE,
)

_NUMBER = re.compile(r"(\d[\d,]*(?:\.\d+)?)")
_RANGE = re.compile(r"\$[\d,.]+[\s,]*TO[\s,]*\$")


def _to_float(text: str) -> Optional[float]:
    match = _NUMBER.search(text)
    if not match:
        return None
    return float(match.group(1).replace(",", ""))


def amount_value(raw: Optional[str]) -> Optional[float]:
    """
    Reduce an amount string to a single dollar value.

    ``UNDISCLOSED`` -> 100, ``OVER $X`` -> X, ``UNDER $X`` -> X / 2,
    ``$X TO $Y`` -> X. Returns None for text that carries no amount.
    """
    if raw is None:
        return None
    text = raw.strip().upper()
    if not text:
        return None
    if "UNDISCLOSED" in text:
        return UNDISCLOSED_VALUE
    if text.startswith("OVER"):
        return _to_float(text[4:])
    if text.startswith("UNDER"):
        value = _to_float(text[5:])
        return value / 2 if value is not None else None
    if _RANGE.search(text):
        return _to_float(text.split("TO", 1)[0])
    return _to_float(text)


def format_amount(value: float) -> str:
    if value == int(value):
        return f"${int(value):,}"
    return f"${value:,.2f}"


def normalize_amount(raw: Optional[str]) -> str:
    """
    Normalize an amount string to ``$N`` form.

    Idempotent: ``normalize_amount(normalize_amount(x)) == normalize_amount(x)``.
    Text without an amount is returned stripped.
    """
    value = amount_value(raw)
    if value is None:
        return (raw or "").strip()
    return format_amount(value)


def find_amount(text: Optional[str]) -> Optional[str]:
    """Return the first amount expression inside free text, if any."""
    if not text:
        return None
    if re.search(r"\bundisclosed\b", text, re.IGNORECASE):
        match = AMOUNT_PATTERN.search(text)
        return match.group(1) if match else "UNDISCLOSED"
    match = AMOUNT_PATTERN.search(text)
    return match.group(1) if match else None


def total_amount(amounts: Iterable[Optional[str]]) -> float:
    """Sum the normalized values of the given amount strings."""
    total = 0.0
    for raw in amounts:
        value = amount_value(raw)
        if value is not None:
            total += value
    return round(total, 2)
