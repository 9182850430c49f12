"""
Field normalization for customer matching.

Best-effort canonical forms for comparing booking-site profiles with CRM
records. Not a strict E.164 parser: it accepts numbers with or without the
country code, with or without the trunk zero, and with any separators.
"""
import re
from typing import NamedTuple, Optional, Sequence

_NON_DIGITS = re.compile(r"\D")

# Thai subscriber numbers are 9 digits once the trunk "0" / country code is removed
NATIONAL_NUMBER_LENGTH = 9
COUNTRY_CODES: Sequence[str] = ("66",)


class NameParts(NamedTuple):
    first: str
    last: str


def normalize_phone(
    raw: Optional[str],
    country_codes: Sequence[str] = COUNTRY_CODES,
    national_length: int = NATIONAL_NUMBER_LENGTH,
) -> str:
    """Reduce a phone number to its national subscriber digits."""
    if not raw:
        return ""

    digits = _NON_DIGITS.sub("", str(raw))

    if digits.startswith("0"):
        digits = digits[1:]

    if len(digits) > national_length:
        for code in country_codes:
            if digits.startswith(code):
                digits = digits[len(code):]
                break

    # Unknown country code or a trunk zero after the code
    if len(digits) > national_length:
        digits = digits[-national_length:]

    return digits


def split_name(display_name: Optional[str]) -> NameParts:
    parts = (display_name or "").split()
    if not parts:
        return NameParts("", "")
    if len(parts) == 1:
        return NameParts(parts[0], "")
    return NameParts(parts[0], " ".join(parts[1:]))


def normalize_text(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return str(raw).strip().lower()
