"""Decimal helpers shared by the checkout engine.

Amounts enter the engine as floats (ORM columns), strings (JSON) or Decimals;
everything is normalized to two-place Decimals before any comparison.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.tillbook.core.error_catalog import AppError, ErrorCatalog

CENT = Decimal("0.01")
# Largest amount a till accepts; keeps cent quantization inside the default 28-digit context.
MAX_MONEY = Decimal("9999999999.99")
ZERO = Decimal("0.00")
SETTLEMENT_EPSILON = Decimal("0.01")
CASH_ROUNDING_INCREMENT = Decimal("0.05")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value) -> Decimal:
    try:
        return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise AppError(
            ErrorCatalog.VALIDATION_ERROR,
            details={"message": "Amount is not a representable money value", "amount": str(value)},
        ) from exc


def round_half_up_int(value) -> int:
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_cash_rounding(amount, method: str | None, increment: Decimal = CASH_ROUNDING_INCREMENT) -> Decimal:
    """Round to the nearest cash increment when the keyed method is cash.

    Any other method only gets cent quantization. Rounding an already rounded
    amount returns it unchanged.
    """
    value = quantize_money(amount)
    if method != "cash" or increment <= 0:
        return value
    steps = (value / increment).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return quantize_money(steps * increment)


def within_epsilon(value, epsilon: Decimal = SETTLEMENT_EPSILON) -> bool:
    return abs(to_decimal(value)) <= epsilon
