"""
services/money.py — Integer currency arithmetic.

All amounts are ints in the smallest currency unit. Float arithmetic must
never appear in or around money calculations; fee percentages go through
Decimal and are rounded up explicitly.

Equal split rule (split_evenly):
  1. raw = total / n, rounded half-up to the nearest `unit` (100 by default).
  2. The first n-1 shares take that value; the last share absorbs the
     difference so the shares sum to `total` exactly.
  3. If step 2 would make the last share negative, or more than one unit
     away from the others, the whole units are dealt out evenly instead
     (extra units to the last positions) and the sub-unit residual is added
     to the last of the lower shares.
  Either way: every share >= 0, sum(shares) == total, max - min <= unit.

Layer rules:
  - No Flask imports, no session. Pure functions only.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, Decimal, InvalidOperation

from holiday_ledger.app.errors import AppError, ErrorCode

DEFAULT_ROUNDING_UNIT = 100


def _require_int(value, name: str) -> int:
    # bool is an int subclass; True must not silently mean 1.
    if isinstance(value, bool) or not isinstance(value, int):
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"{name} must be an integer, got {value!r}.",
            400,
            field=name,
        )
    return value


def _round_half_up(numerator: int, denominator: int) -> int:
    """round(numerator / denominator) with .5 rounding up; both non-negative."""
    return (2 * numerator + denominator) // (2 * denominator)


def split_evenly(total: int, n: int, unit: int = DEFAULT_ROUNDING_UNIT) -> list[int]:
    """
    Splits `total` into `n` non-negative integer shares.

    Guarantees sum(result) == total and max(result) - min(result) <= unit.
    Remainder placement is deterministic: the last share (the newest
    participant in creation order) absorbs the rounding difference.

    Raises:
        AppError(INVALID_INPUT, 400) — n <= 0, total < 0, or unit <= 0.
    """
    _require_int(total, "total")
    _require_int(n, "n")
    _require_int(unit, "unit")

    if n <= 0:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"Cannot split among {n} participants.",
            400,
        )
    if total < 0:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"Cannot split a negative total ({total}).",
            400,
            field="total",
        )
    if unit <= 0:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"Rounding unit must be positive, got {unit}.",
            400,
        )

    base = _round_half_up(total, n * unit) * unit
    last = total - base * (n - 1)

    if last >= 0 and abs(last - base) <= unit:
        shares = [base] * (n - 1) + [last]
    else:
        shares = _deal_whole_units(total, n, unit)

    # Must always hold; a failure here is a programming error.
    if sum(shares) != total:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split produced sum {sum(shares)} for total {total}.",
            500,
        )
    return shares


def _deal_whole_units(total: int, n: int, unit: int) -> list[int]:
    whole_units, residual = divmod(total, unit)
    per_share, extra = divmod(whole_units, n)

    shares = [per_share * unit] * (n - extra) + [(per_share + 1) * unit] * extra
    # extra < n, so index n - extra - 1 is always a lower share.
    shares[n - extra - 1] += residual
    return shares


def compute_service_fee(
        net_amount: int,
        rate: Decimal,
        fixed_fee: int,
        rounding_unit: int,
) -> int:
    """
    Gateway service fee charged on top of the net amount:

        ceil((net * rate + fixed_fee) / rounding_unit) * rounding_unit

    With the defaults (2%, 2000, 100): net 100000 → fee 4000.
    """
    _require_int(net_amount, "net_amount")
    if net_amount < 0:
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            f"Net amount must not be negative ({net_amount}).",
            400,
        )
    if rounding_unit <= 0:
        raise AppError(
            ErrorCode.INVALID_INPUT,
            f"Fee rounding unit must be positive, got {rounding_unit}.",
            400,
        )

    raw = (Decimal(net_amount) * Decimal(rate) + Decimal(fixed_fee)) / Decimal(rounding_unit)
    return int(raw.to_integral_value(rounding=ROUND_CEILING)) * rounding_unit


def parse_gateway_amount(raw) -> int:
    """
    Parses a gateway amount such as "104000.00" into an exact int.

    Fractional amounts are rejected, never rounded: the ledger currency has
    no subunit below 1.
    """
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            f"Gateway amount {raw!r} is not a number.",
            400,
            field="gross_amount",
        )

    if not value.is_finite() or value != value.to_integral_value() or value < 0:
        raise AppError(
            ErrorCode.INVALID_AMOUNT,
            f"Gateway amount {raw!r} is not a non-negative whole amount.",
            400,
            field="gross_amount",
        )
    return int(value)
