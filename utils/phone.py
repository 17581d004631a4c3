"""Phone number normalization shared by every read and write path."""

import re
from typing import Tuple

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(phone: str) -> str:
    """
    Canonical form: a leading "+" followed by digits only.
    Spaces, dashes and brackets are dropped; "" stays "".
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        return ""
    return f"+{digits}"


def bare_phone(phone: str) -> str:
    return normalize_phone(phone).lstrip("+")


def phone_variants(phone: str) -> Tuple[str, ...]:
    """
    Lookup order for stores that were not normalized consistently upstream.
    Migration debt: drop the bare form once every stored phone is canonical.
    """
    canonical = normalize_phone(phone)
    if not canonical:
        return ()
    return (canonical, bare_phone(canonical))


def mask_phone(phone: str) -> str:
    """Mask for log lines: +659***4567."""
    canonical = normalize_phone(phone)
    if len(canonical) <= 7:
        return "***"
    return f"{canonical[:4]}***{canonical[-4:]}"
