"""Ledger address format helpers."""

import re

ADDRESS_PATTERN = re.compile(r"0x[a-fA-F0-9]{40}")

ZERO_ADDRESS = "0x" + "0" * 40


def is_address(value: object) -> bool:
    """True for the canonical 20-byte hex address with 0x prefix."""
    return isinstance(value, str) and ADDRESS_PATTERN.fullmatch(value) is not None


def normalize_address(value: str) -> str:
    """
    Lowercase form used for comparisons and as dict keys.

    Raises:
        ValueError: if the value is not a well-formed address
    """
    if not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def same_address(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()
