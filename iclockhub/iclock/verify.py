"""Verification-method labels for device verify codes."""

from __future__ import annotations

from typing import Any

UNKNOWN_METHOD = "unknown"

VERIFY_METHODS: dict[int, str] = {
    0: "password",
    1: "fingerprint",
    2: "password",
    3: "card",
    4: "fingerprint+password",
    5: "card+password",
    6: "fingerprint+card",
    7: "fingerprint+card+password",
    8: "face",
    9: "face+password",
    10: "face+card",
    11: "face+card+password",
    12: "face+fingerprint",
    13: "face+fingerprint+password",
    14: "face+fingerprint+card",
    15: "face+fingerprint+card+password",
}


def decode(code: Any) -> str:
    """Map a device verify code to a human label; anything off-table is "unknown"."""
    if isinstance(code, bool):
        return UNKNOWN_METHOD
    if isinstance(code, int):
        value = code
    else:
        try:
            value = int(str(code).strip())
        except (TypeError, ValueError):
            return UNKNOWN_METHOD
    return VERIFY_METHODS.get(value, UNKNOWN_METHOD)
