from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal

from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.core.money import (
    CASH_ROUNDING_INCREMENT,
    SETTLEMENT_EPSILON,
    ZERO,
    apply_cash_rounding,
    quantize_money,
)
from app.tillbook.services.loyalty_ledger import NO_LOYALTY, LoyaltyQuote
from app.tillbook.services.sale_draft import SaleDraft
from app.tillbook.services.tax_oracle import TaxCalculation

TENDER_METHODS = ("cash", "card", "helcim", "gift_card", "loyalty_credit", "custom")

OUTCOME_ACCEPTED = "accepted"
OUTCOME_AUTHORIZATION_REQUIRED = "authorization_required"


@dataclass(frozen=True)
class TenderProposal:
    amount: Decimal
    method: str
    custom_name: str | None = None

    def to_state(self) -> dict:
        return {"amount": str(self.amount), "method": self.method, "custom_name": self.custom_name}

    @classmethod
    def from_state(cls, state: dict) -> "TenderProposal":
        return cls(
            amount=quantize_money(state["amount"]),
            method=state["method"],
            custom_name=state.get("custom_name"),
        )


@dataclass(frozen=True)
class Tender:
    method: str
    amount: Decimal
    custom_name: str | None = None
    tip_amount: Decimal = ZERO
    manager_override: bool = False
    recorded_at: datetime = field(default_factory=datetime.utcnow)

    def to_state(self) -> dict:
        return {
            "method": self.method,
            "amount": str(self.amount),
            "custom_name": self.custom_name,
            "manager_override": self.manager_override,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_state(cls, state: dict) -> "Tender":
        return cls(
            method=state["method"],
            amount=quantize_money(state["amount"]),
            custom_name=state.get("custom_name"),
            manager_override=bool(state.get("manager_override", False)),
            recorded_at=datetime.fromisoformat(state["recorded_at"]),
        )


@dataclass(frozen=True)
class TenderOutcome:
    status: str
    proposal: TenderProposal
    tender: Tender | None
    remaining_balance: Decimal
    change_owed: Decimal

    @property
    def accepted(self) -> bool:
        return self.status == OUTCOME_ACCEPTED


class TenderCollector:
    """Accumulates tenders against a sale total until the balance reaches zero.

    Cash rounding is keyed to the first tender's method and is not re-derived
    as more tenders arrive. The tip is fixed before the first tender and rides
    on whichever tender is first.
    """

    def __init__(
        self,
        base_total,
        *,
        loyalty: LoyaltyQuote = NO_LOYALTY,
        tip=ZERO,
        cash_rounding_enabled: bool = True,
        tenders=(),
        max_tenders: int = 20,
        epsilon: Decimal = SETTLEMENT_EPSILON,
        rounding_increment: Decimal = CASH_ROUNDING_INCREMENT,
    ):
        self.base_total = max(ZERO, quantize_money(base_total))
        self.loyalty = loyalty
        self.tip = quantize_money(tip)
        self.cash_rounding_enabled = cash_rounding_enabled
        self.max_tenders = max_tenders
        self.epsilon = epsilon
        self.rounding_increment = rounding_increment
        self._tenders: list[Tender] = [replace(tender, tip_amount=ZERO) for tender in tenders]

    @classmethod
    def for_sale(
        cls,
        draft: SaleDraft,
        tax: TaxCalculation,
        *,
        loyalty: LoyaltyQuote = NO_LOYALTY,
        **kwargs,
    ) -> "TenderCollector":
        return cls(cls.sale_base(draft, tax, loyalty), loyalty=loyalty, **kwargs)

    @staticmethod
    def sale_base(draft: SaleDraft, tax: TaxCalculation, loyalty: LoyaltyQuote = NO_LOYALTY) -> Decimal:
        return draft.subtotal - draft.discount_amount - loyalty.auto_applied + tax.total_tax

    def reprice(self, base_total) -> None:
        """Replace the pre-tip total; only allowed before the first tender."""
        if self._tenders:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "Sale total is fixed once a tender exists"})
        self.base_total = max(ZERO, quantize_money(base_total))

    @property
    def tenders(self) -> list[Tender]:
        if not self._tenders:
            return []
        first, *rest = self._tenders
        return [replace(first, tip_amount=self.tip), *rest]

    @property
    def raw_total(self) -> Decimal:
        return self.base_total + self.tip

    @property
    def rounding_method(self) -> str | None:
        return self._tenders[0].method if self._tenders else None

    def display_total_for(self, method: str | None) -> Decimal:
        if not self.cash_rounding_enabled:
            return quantize_money(self.raw_total)
        return apply_cash_rounding(self.raw_total, method, self.rounding_increment)

    @property
    def display_total(self) -> Decimal:
        return self.display_total_for(self.rounding_method)

    @property
    def cash_rounding_applied(self) -> bool:
        return self.display_total != quantize_money(self.raw_total)

    @property
    def total_paid(self) -> Decimal:
        return quantize_money(sum((tender.amount for tender in self._tenders), ZERO))

    @property
    def remaining_balance(self) -> Decimal:
        return max(ZERO, self.display_total - self.total_paid)

    @property
    def change_owed(self) -> Decimal:
        return max(ZERO, self.total_paid - self.display_total)

    @property
    def next_default_amount(self) -> Decimal:
        return self.remaining_balance

    def is_payable(self) -> bool:
        return self.display_total - self.total_paid <= self.epsilon

    @property
    def loyalty_tendered(self) -> Decimal:
        return quantize_money(
            sum((tender.amount for tender in self._tenders if tender.method == "loyalty_credit"), ZERO)
        )

    @property
    def loyalty_credit_remaining(self) -> Decimal:
        if not self.loyalty.applies:
            return ZERO
        return max(ZERO, self.loyalty.available_credit - self.loyalty.auto_applied - self.loyalty_tendered)

    @property
    def total_loyalty_redeemed(self) -> Decimal:
        return self.loyalty.auto_applied + self.loyalty_tendered

    def validate(self, proposal: TenderProposal) -> None:
        if proposal.method not in TENDER_METHODS:
            raise AppError(ErrorCatalog.TENDER_UNKNOWN_METHOD, details={"method": proposal.method})
        if proposal.amount <= 0:
            raise AppError(ErrorCatalog.TENDER_INVALID_AMOUNT, details={"amount": proposal.amount})
        if proposal.method == "custom" and not (proposal.custom_name or "").strip():
            raise AppError(ErrorCatalog.TENDER_MISSING_CUSTOM_NAME)
        if proposal.method == "loyalty_credit":
            available = self.loyalty_credit_remaining
            if proposal.amount > available:
                raise AppError(
                    ErrorCatalog.LOYALTY_EXCEEDS_AVAILABLE_CREDIT,
                    details={"amount": proposal.amount, "available_credit": available},
                )
            minimum = self.loyalty.min_redemption_dollars
            if not self.loyalty.allow_partial_redemption and proposal.amount < minimum:
                raise AppError(
                    ErrorCatalog.LOYALTY_BELOW_MINIMUM_REDEMPTION,
                    details={"amount": proposal.amount, "min_redemption": minimum},
                )
        if len(self._tenders) >= self.max_tenders:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "Too many tenders for one sale"})

    def propose_tender(self, amount, method: str, custom_name: str | None = None, *, authorized: bool = False):
        proposal = TenderProposal(
            amount=quantize_money(amount),
            method=method,
            custom_name=custom_name.strip() if custom_name else None,
        )
        return self.propose(proposal, authorized=authorized)

    def propose(self, proposal: TenderProposal, *, authorized: bool = False) -> TenderOutcome:
        self.validate(proposal)
        key_method = self.rounding_method or proposal.method
        remaining = self.display_total_for(key_method) - self.total_paid
        if proposal.amount > remaining and proposal.method != "cash" and not authorized:
            return TenderOutcome(
                status=OUTCOME_AUTHORIZATION_REQUIRED,
                proposal=proposal,
                tender=None,
                remaining_balance=self.remaining_balance,
                change_owed=self.change_owed,
            )

        tender = Tender(
            method=proposal.method,
            amount=proposal.amount,
            custom_name=proposal.custom_name if proposal.method == "custom" else None,
            manager_override=authorized and proposal.amount > remaining,
        )
        self._tenders.append(tender)
        return TenderOutcome(
            status=OUTCOME_ACCEPTED,
            proposal=proposal,
            tender=self.tenders[-1],
            remaining_balance=self.remaining_balance,
            change_owed=self.change_owed,
        )

    def remove_tender(self, index: int) -> Tender:
        if index < 0 or index >= len(self._tenders):
            raise AppError(ErrorCatalog.TENDER_NOT_FOUND, details={"index": index})
        return self._tenders.pop(index)

    def set_tip(self, amount) -> Decimal:
        if self._tenders:
            raise AppError(ErrorCatalog.TIP_LOCKED)
        tip = quantize_money(amount)
        if tip < 0:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"field": "tip_amount", "amount": tip})
        self.tip = tip
        return tip

    def to_state(self) -> dict:
        return {
            "base_total": str(self.base_total),
            "tip": str(self.tip),
            "cash_rounding_enabled": self.cash_rounding_enabled,
            "max_tenders": self.max_tenders,
            "tenders": [tender.to_state() for tender in self._tenders],
        }

    @classmethod
    def from_state(cls, state: dict, *, loyalty: LoyaltyQuote = NO_LOYALTY, **kwargs) -> "TenderCollector":
        return cls(
            state["base_total"],
            loyalty=loyalty,
            tip=state.get("tip", "0"),
            cash_rounding_enabled=bool(state.get("cash_rounding_enabled", True)),
            tenders=[Tender.from_state(item) for item in state.get("tenders", [])],
            max_tenders=int(state.get("max_tenders", 20)),
            **kwargs,
        )
