"""Immutable inputs handed to the checkout engine by the register."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.tillbook.core.money import ZERO, quantize_money, to_decimal


@dataclass(frozen=True)
class LineItem:
    sku: str | None
    name: str
    unit_price: Decimal
    quantity: int = 1
    category_id: str | None = None
    tax_rule_ids: tuple[str, ...] = ()

    @property
    def line_total(self) -> Decimal:
        return quantize_money(self.unit_price * self.quantity)

    def to_state(self) -> dict:
        return {
            "sku": self.sku,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "category_id": self.category_id,
            "tax_rule_ids": list(self.tax_rule_ids),
        }

    @classmethod
    def from_state(cls, state: dict) -> "LineItem":
        return cls(
            sku=state.get("sku"),
            name=state["name"],
            unit_price=quantize_money(state["unit_price"]),
            quantity=int(state.get("quantity", 1)),
            category_id=state.get("category_id"),
            tax_rule_ids=tuple(state.get("tax_rule_ids") or ()),
        )


@dataclass(frozen=True)
class SaleDraft:
    items: tuple[LineItem, ...]
    subtotal: Decimal
    discount_amount: Decimal = ZERO
    loyalty_account_id: str | None = None

    @classmethod
    def build(
        cls,
        items: list[LineItem],
        *,
        subtotal=None,
        discount_amount=None,
        loyalty_account_id: str | None = None,
    ) -> "SaleDraft":
        computed = sum((item.line_total for item in items), ZERO)
        return cls(
            items=tuple(items),
            subtotal=quantize_money(subtotal if subtotal is not None else computed),
            discount_amount=quantize_money(discount_amount),
            loyalty_account_id=loyalty_account_id,
        )

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_state(self) -> dict:
        return {
            "items": [item.to_state() for item in self.items],
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "loyalty_account_id": self.loyalty_account_id,
        }

    @classmethod
    def from_state(cls, state: dict) -> "SaleDraft":
        return cls(
            items=tuple(LineItem.from_state(item) for item in state.get("items", [])),
            subtotal=quantize_money(state["subtotal"]),
            discount_amount=quantize_money(state.get("discount_amount")),
            loyalty_account_id=state.get("loyalty_account_id"),
        )


@dataclass(frozen=True)
class BusinessSettings:
    business_id: str
    name: str = ""
    short_code: str | None = None
    timezone: str = "America/Toronto"
    tip_enabled: bool = False
    default_tip_percent: Decimal = ZERO
    cash_rounding_enabled: bool = True

    @property
    def receipt_prefix(self) -> str:
        if self.short_code:
            return self.short_code.upper()
        return self.business_id[-4:].upper()

    @classmethod
    def from_record(cls, business) -> "BusinessSettings":
        return cls(
            business_id=str(business.id),
            name=business.name,
            short_code=business.short_code,
            timezone=business.timezone,
            tip_enabled=bool(business.tip_enabled),
            default_tip_percent=to_decimal(business.default_tip_percent),
            cash_rounding_enabled=bool(business.cash_rounding_enabled),
        )

    def local_date(self, now: datetime | None = None) -> date:
        try:
            zone = ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            zone = timezone.utc
        current = now or datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(zone).date()
