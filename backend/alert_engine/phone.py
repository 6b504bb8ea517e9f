"""Recipient number normalization and country-code checks."""

import re
from collections.abc import Iterable

from .config import CountryCode
from .errors import CountryNotEnabledError, InvalidRecipientError

_E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")
_SEPARATORS_RE = re.compile(r"[\s\-().]")


def normalize_number(raw: str) -> str:
    """Normalize a contact number to E.164.

    Accepts ``00`` international prefixes and bare North American numbers
    (10 digits, or 11 starting with 1), which is how station contacts are
    usually typed in.
    """
    if not raw or not raw.strip():
        raise InvalidRecipientError("Empty phone number")

    cleaned = _SEPARATORS_RE.sub("", raw.strip())
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]
    elif not cleaned.startswith("+") and cleaned.isdigit():
        if len(cleaned) == 10:
            cleaned = "+1" + cleaned
        elif len(cleaned) == 11 and cleaned.startswith("1"):
            cleaned = "+" + cleaned

    if not _E164_RE.match(cleaned):
        raise InvalidRecipientError(f"Invalid phone number format: {raw!r} (expected E.164, e.g. +12025550123)")
    return cleaned


def match_country(number: str, countries: Iterable[CountryCode]) -> CountryCode | None:
    """Longest calling-code prefix match."""
    best: CountryCode | None = None
    for country in countries:
        if number.startswith(country.code) and (best is None or len(country.code) > len(best.code)):
            best = country
    return best


def ensure_country_enabled(number: str, countries: Iterable[CountryCode]) -> CountryCode:
    country = match_country(number, countries)
    if country is None or not country.enabled:
        raise CountryNotEnabledError(number, country.name if country else None)
    return country
