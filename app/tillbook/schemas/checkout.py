from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from app.tillbook.core.money import MAX_MONEY

TenderMethod = Literal["cash", "card", "helcim", "gift_card", "loyalty_credit", "custom"]


class LineItemRequest(BaseModel):
    sku: str | None = None
    name: str = Field(min_length=1)
    unit_price: Decimal = Field(ge=0, le=MAX_MONEY)
    quantity: int = Field(default=1, ge=1)
    category_id: str | None = None
    tax_rule_ids: list[str] = Field(default_factory=list)


class CheckoutSessionCreateRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "items": [{"sku": "SKU-1", "name": "Coffee beans", "unit_price": "25.00", "quantity": 2}],
                "discount_amount": "0.00",
                "loyalty_account_id": None,
            }
        }
    }

    items: list[LineItemRequest] = Field(min_length=1)
    subtotal: Decimal | None = Field(default=None, ge=0, le=MAX_MONEY)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_MONEY)
    loyalty_account_id: str | None = None

    @model_validator(mode="after")
    def discount_within_subtotal(self):
        subtotal = self.subtotal
        if subtotal is None:
            subtotal = sum((item.unit_price * item.quantity for item in self.items), Decimal("0"))
        if self.discount_amount > subtotal:
            raise ValueError("discount_amount cannot exceed subtotal")
        return self


class TipRequest(BaseModel):
    tip_amount: Decimal = Field(ge=0, le=MAX_MONEY)


class TenderRequest(BaseModel):
    model_config = {
        "json_schema_extra": {"example": {"amount": "60.00", "method": "cash"}},
    }

    amount: Decimal = Field(le=MAX_MONEY)
    method: TenderMethod
    custom_name: str | None = None


class AuthorizationRequest(BaseModel):
    pin: str = Field(min_length=1)


class SignOffRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=64)
    amount: Decimal | None = Field(default=None, ge=0, le=MAX_MONEY)


class FinalizeRequest(BaseModel):
    notes: str | None = None


class TaxResponse(BaseModel):
    aggregated_taxes: dict[str, Decimal]
    aggregated_rebates: dict[str, Decimal]
    total_tax: Decimal
    degraded: bool


class LoyaltyQuoteResponse(BaseModel):
    account_id: str | None
    balance: Decimal
    points_balance: int
    available_credit: Decimal
    credit_remaining: Decimal
    remaining_daily: Decimal | None
    auto_applied: Decimal
    min_redemption_dollars: Decimal
    allow_partial_redemption: bool
    points_to_earn: int


class TenderResponse(BaseModel):
    index: int
    method: str
    amount: Decimal
    custom_name: str | None
    tip_amount: Decimal
    manager_override: bool
    recorded_at: datetime


class TenderProposalResponse(BaseModel):
    amount: Decimal
    method: str
    custom_name: str | None


class AuthorizationStateResponse(BaseModel):
    state: str
    reason: str | None
    requested_amount: Decimal | None
    pending: TenderProposalResponse | None


class SettlementResultResponse(BaseModel):
    sale_id: str
    receipt_number: str
    receipt_id: str
    final_total: Decimal
    change_owed: Decimal
    loyalty_redeemed: Decimal
    loyalty_points_earned: int


class CheckoutSessionResponse(BaseModel):
    id: str
    business_id: str
    status: str
    business_date: date
    item_count: int
    subtotal: Decimal
    discount_amount: Decimal
    loyalty_discount: Decimal
    tax: TaxResponse
    tip_amount: Decimal
    raw_total: Decimal
    display_total: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    change_owed: Decimal
    next_default_amount: Decimal
    payable: bool
    cash_rounding_applied: bool
    tenders: list[TenderResponse]
    loyalty: LoyaltyQuoteResponse
    authorization: AuthorizationStateResponse
    result: SettlementResultResponse | None
    trace_id: str


class TenderOutcomeResponse(BaseModel):
    status: Literal["accepted", "authorization_required"]
    session: CheckoutSessionResponse


class FinalizeResponse(SettlementResultResponse):
    checkout_session_id: str
    replayed: bool = False
    trace_id: str
