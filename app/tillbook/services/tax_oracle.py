"""Tax and rebate calculation for a checkout.

The engine only depends on the ``TaxOracle`` protocol. ``RuleTaxOracle`` is the
built-in implementation driven by the business's configured tax rules, and
``TaxService`` wraps any oracle with the last-known fallback used at the
register when the oracle is unavailable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Iterable, Protocol

from app.tillbook.core.logging import log_json
from app.tillbook.core.metrics import metrics
from app.tillbook.core.money import ZERO, quantize_money, to_decimal
from app.tillbook.services.sale_draft import LineItem

logger = logging.getLogger(__name__)

TAX_RULE_TYPES = ("tax", "rebate", "exemption")


@dataclass(frozen=True)
class TaxCalculation:
    aggregated_taxes: dict[str, Decimal] = field(default_factory=dict)
    aggregated_rebates: dict[str, Decimal] = field(default_factory=dict)
    total_tax: Decimal = ZERO
    degraded: bool = False

    def to_state(self) -> dict:
        return {
            "aggregated_taxes": {name: str(amount) for name, amount in self.aggregated_taxes.items()},
            "aggregated_rebates": {name: str(amount) for name, amount in self.aggregated_rebates.items()},
            "total_tax": str(self.total_tax),
            "degraded": self.degraded,
        }

    @classmethod
    def from_state(cls, state: dict | None) -> "TaxCalculation":
        if not state:
            return ZERO_TAX
        return cls(
            aggregated_taxes={name: quantize_money(v) for name, v in (state.get("aggregated_taxes") or {}).items()},
            aggregated_rebates={name: quantize_money(v) for name, v in (state.get("aggregated_rebates") or {}).items()},
            total_tax=quantize_money(state.get("total_tax")),
            degraded=bool(state.get("degraded", False)),
        )


ZERO_TAX = TaxCalculation()


class TaxOracle(Protocol):
    def compute_tax(
        self,
        items: Iterable[LineItem],
        discount: Decimal,
        loyalty_redeemed: Decimal,
        subtotal: Decimal,
    ) -> TaxCalculation: ...


@dataclass(frozen=True)
class TaxRuleConfig:
    id: str
    name: str
    category_type: str
    rate: Decimal
    category_ids: tuple[str, ...] = ()
    rebate_affects: tuple[str, ...] = ()

    @classmethod
    def from_record(cls, record) -> "TaxRuleConfig":
        if record.category_type not in TAX_RULE_TYPES:
            raise ValueError(f"unknown tax rule type {record.category_type!r} on rule {record.name!r}")
        return cls(
            id=str(record.id),
            name=record.name,
            category_type=record.category_type,
            rate=to_decimal(record.rate),
            category_ids=tuple(str(value) for value in (record.category_ids or ())),
            rebate_affects=tuple(str(value) for value in (record.rebate_affects or ())),
        )


class RuleTaxOracle:
    """Applies category and per-item rules to each line.

    Discounts and loyalty redemption reduce every line proportionally before
    rates are applied. A line's net tax never goes below zero.
    """

    def __init__(self, rules: Iterable[TaxRuleConfig]):
        self.rules = tuple(rules)
        self._by_id = {rule.id: rule for rule in self.rules}

    def rules_for(self, item: LineItem) -> list[TaxRuleConfig]:
        applicable: list[TaxRuleConfig] = []
        if item.category_id:
            applicable.extend(rule for rule in self.rules if item.category_id in rule.category_ids)
        applicable.extend(self._by_id[rule_id] for rule_id in item.tax_rule_ids if rule_id in self._by_id)
        seen: set[str] = set()
        unique = []
        for rule in applicable:
            if rule.id in seen:
                continue
            seen.add(rule.id)
            unique.append(rule)
        return unique

    def compute_tax(self, items, discount, loyalty_redeemed, subtotal) -> TaxCalculation:
        subtotal = to_decimal(subtotal)
        reduction = to_decimal(discount) + to_decimal(loyalty_redeemed)
        ratio = ZERO
        if subtotal > 0 and reduction > 0:
            ratio = min(reduction / subtotal, Decimal("1"))

        taxes: dict[str, Decimal] = {}
        rebates: dict[str, Decimal] = {}
        total = Decimal("0")
        for item in items:
            taxable = item.line_total * (1 - ratio)
            rules = self.rules_for(item)
            if any(rule.category_type == "exemption" for rule in rules):
                continue
            item_tax = Decimal("0")
            item_rebate = Decimal("0")
            for rule in rules:
                if rule.category_type == "tax":
                    amount = taxable * rule.rate
                    taxes[rule.name] = taxes.get(rule.name, Decimal("0")) + amount
                    item_tax += amount
                elif rule.category_type == "rebate":
                    amount = self._rebate_amount(rule, taxable)
                    if amount:
                        rebates[rule.name] = rebates.get(rule.name, Decimal("0")) + amount
                        item_rebate += amount
            total += max(item_tax - item_rebate, Decimal("0"))

        return TaxCalculation(
            aggregated_taxes={name: quantize_money(amount) for name, amount in taxes.items()},
            aggregated_rebates={name: quantize_money(amount) for name, amount in rebates.items()},
            total_tax=quantize_money(total),
        )

    def _rebate_amount(self, rule: TaxRuleConfig, taxable: Decimal) -> Decimal:
        if rule.rate > 0:
            return taxable * rule.rate
        if rule.rate == 0 and rule.rebate_affects:
            return sum(
                (taxable * self._by_id[tax_id].rate for tax_id in rule.rebate_affects if tax_id in self._by_id),
                Decimal("0"),
            )
        return Decimal("0")


class TaxService:
    def __init__(self, oracle: TaxOracle):
        self.oracle = oracle

    def compute(
        self,
        items,
        *,
        discount,
        loyalty_redeemed,
        subtotal,
        last_known: TaxCalculation | None = None,
        context: dict | None = None,
    ) -> TaxCalculation:
        try:
            return self.oracle.compute_tax(
                tuple(items),
                quantize_money(discount),
                quantize_money(loyalty_redeemed),
                quantize_money(subtotal),
            )
        except Exception as exc:
            fallback = last_known or ZERO_TAX
            metrics.increment_tax_oracle_fallback()
            log_json(
                logger,
                {
                    "event": "tax_oracle_fallback",
                    "reason": str(exc),
                    "error_class": exc.__class__.__name__,
                    "fallback_total_tax": str(fallback.total_tax),
                    **(context or {}),
                },
                level=logging.WARNING,
            )
            return replace(fallback, degraded=True)
