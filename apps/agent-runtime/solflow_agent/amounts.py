from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import IntentInputError

LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9
MAX_SAFE_LAMPORTS = 2**53 - 1

_UI_AMOUNT_RE = re.compile(r"^([0-9]+)(?:\.([0-9]+))?$")
_UINT_RE = re.compile(r"^[0-9]+$")


def ensure_string(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise IntentInputError(f"{field} is required")
    return value


def ensure_number(value: Any, field: str) -> float | int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise IntentInputError(f"{field} is required")
    return value


def parse_positive_number(text: str) -> float | None:
    try:
        value = float(text)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def parse_positive_int(value: str, field: str = "amount") -> int:
    """Parse a strictly positive minimal-unit integer string."""
    normalized = value.strip()
    if not _UINT_RE.match(normalized):
        raise IntentInputError(f"{field} must be an integer string")
    amount = int(normalized)
    if amount <= 0:
        raise IntentInputError(f"{field} must be greater than 0")
    return amount


def parse_non_negative_int(value: str, field: str) -> int:
    normalized = value.strip()
    if not _UINT_RE.match(normalized):
        raise IntentInputError(f"{field} must be an integer string")
    return int(normalized)


def decimal_ui_amount_to_raw(amount_ui: str, decimals: int, field: str, allow_zero: bool = False) -> str:
    """Convert a human decimal string to minimal units without floating point.

    Rejects more fractional digits than the token carries. A zero result is
    rejected unless ``allow_zero`` is set (one leg of a two-sided LP add).
    """
    match = _UI_AMOUNT_RE.match(amount_ui.strip())
    if not match:
        raise IntentInputError(f"{field} must be a positive decimal string")
    whole = match.group(1)
    fraction = match.group(2) or ""
    if len(fraction) > decimals:
        raise IntentInputError(f"{field} has too many decimal places for token decimals={decimals}")
    raw = int(whole) * 10**decimals + (int(fraction.ljust(decimals, "0")) if decimals else 0)
    if raw <= 0 and not allow_zero:
        raise IntentInputError(f"{field} must be positive")
    return str(raw)


def format_ui_amount(amount_raw: int, decimals: int) -> str:
    if decimals <= 0:
        return str(amount_raw)
    whole, fraction = divmod(amount_raw, 10**decimals)
    if fraction == 0:
        return str(whole)
    return f"{whole}.{str(fraction).rjust(decimals, '0').rstrip('0')}"


def to_lamports(amount_sol: Any) -> int:
    if isinstance(amount_sol, bool):
        raise IntentInputError("amountSol must be a positive number")
    try:
        value = Decimal(str(amount_sol).strip())
    except InvalidOperation as exc:
        raise IntentInputError("amountSol must be a positive number") from exc
    if not value.is_finite() or value <= 0:
        raise IntentInputError("amountSol must be a positive number")
    lamports = value * LAMPORTS_PER_SOL
    if lamports != lamports.to_integral_value():
        raise IntentInputError("amountSol supports up to 9 decimal places")
    result = int(lamports)
    if result > MAX_SAFE_LAMPORTS:
        raise IntentInputError("amountSol is too large")
    return result


def bps_of(amount: int, bps: int) -> int:
    return amount * bps // 10_000
