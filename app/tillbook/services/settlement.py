"""Sale settlement.

Every write for a sale happens inside one transaction, as a fixed pipeline of
named steps. The first failing step rolls the whole run back, so a failed
settlement leaves no sale, receipt, line item, tender or ledger row behind and
can be retried as is.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.core.logging import log_json
from app.tillbook.core.metrics import metrics
from app.tillbook.core.money import ZERO, quantize_money, to_decimal
from app.tillbook.db.models import LoyaltyTransaction, Receipt, Sale, SaleItem, SaleTender
from app.tillbook.repos.loyalty import LoyaltyRepository
from app.tillbook.repos.sales import SaleRepository
from app.tillbook.services.loyalty_ledger import LoyaltyAccountSnapshot, LoyaltyQuote, LoyaltySettings, plan_ledger
from app.tillbook.services.sale_draft import BusinessSettings, SaleDraft
from app.tillbook.services.tax_oracle import TaxCalculation
from app.tillbook.services.tender_collector import TenderCollector

logger = logging.getLogger(__name__)

SETTLEMENT_STEPS = ("receipt_number", "sale", "receipt", "line_items", "tenders", "loyalty")


def generate_receipt_number(prefix: str, business_date: date, existing_sales: int | None) -> str:
    stamp = business_date.strftime("%y%m%d")
    if existing_sales is None:
        return f"R{prefix}{stamp}{str(int(time.time() * 1000))[-3:]}"
    return f"R{prefix}{stamp}{existing_sales + 1:03d}"


def receipt_qr_payload(receipt_number: str, business_id: str) -> str:
    return f"{receipt_number}-{business_id[-8:]}"


@dataclass(frozen=True)
class SettlementResult:
    sale_id: str
    receipt_number: str
    receipt_id: str
    final_total: Decimal
    change_owed: Decimal
    loyalty_redeemed: Decimal
    loyalty_points_earned: int

    def to_state(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "receipt_number": self.receipt_number,
            "receipt_id": self.receipt_id,
            "final_total": str(self.final_total),
            "change_owed": str(self.change_owed),
            "loyalty_redeemed": str(self.loyalty_redeemed),
            "loyalty_points_earned": self.loyalty_points_earned,
        }

    @classmethod
    def from_state(cls, state: dict) -> "SettlementResult":
        return cls(
            sale_id=state["sale_id"],
            receipt_number=state["receipt_number"],
            receipt_id=state["receipt_id"],
            final_total=quantize_money(state["final_total"]),
            change_owed=quantize_money(state["change_owed"]),
            loyalty_redeemed=quantize_money(state["loyalty_redeemed"]),
            loyalty_points_earned=int(state["loyalty_points_earned"]),
        )


@dataclass(frozen=True)
class SettlementRequest:
    business: BusinessSettings
    draft: SaleDraft
    tax: TaxCalculation
    collector: TenderCollector
    business_date: date
    loyalty: LoyaltyQuote
    loyalty_settings: LoyaltySettings | None = None
    cashier_user_id: str | None = None
    cashier_name: str | None = None
    checkout_session: object | None = None
    notes: str | None = None


@dataclass
class _PipelineRun:
    request: SettlementRequest
    started_at: datetime = field(default_factory=datetime.utcnow)
    receipt_number: str | None = None
    sale: Sale | None = None
    receipt: Receipt | None = None
    points_earned: int = 0
    result: SettlementResult | None = None
    log_context: dict = field(default_factory=dict)


class SettlementFinalizer:
    def __init__(self, db):
        self.db = db
        self.sales = SaleRepository(db)
        self.loyalty = LoyaltyRepository(db)

    def finalize(self, request: SettlementRequest) -> SettlementResult:
        collector = request.collector
        if not collector.is_payable():
            metrics.record_settlement("rejected")
            raise AppError(
                ErrorCatalog.SETTLEMENT_BALANCE_OUTSTANDING,
                details={
                    "display_total": collector.display_total,
                    "total_paid": collector.total_paid,
                    "remaining_balance": collector.remaining_balance,
                },
            )

        run = _PipelineRun(request=request, log_context=self._log_context(request))
        for step in SETTLEMENT_STEPS:
            self._run_step(step, run)

        run.result = SettlementResult(
            sale_id=str(run.sale.id),
            receipt_number=run.receipt_number,
            receipt_id=str(run.receipt.id),
            final_total=collector.display_total,
            change_owed=collector.change_owed,
            loyalty_redeemed=collector.total_loyalty_redeemed if request.loyalty.applies else ZERO,
            loyalty_points_earned=run.points_earned,
        )
        self._run_step("commit", run)
        result = run.result
        metrics.record_settlement("completed")
        log_json(
            logger,
            {
                "event": "settlement_completed",
                **run.log_context,
                "sale_id": result.sale_id,
                "receipt_number": result.receipt_number,
                "final_total": str(result.final_total),
                "change_owed": str(result.change_owed),
            },
        )
        return result

    def _run_step(self, step: str, run: _PipelineRun) -> None:
        handler = getattr(self, f"_step_{step}")
        try:
            handler(run)
        except AppError as exc:
            self._abort(step, run, exc, exc.error.code)
            raise
        except (SQLAlchemyError, ValueError, TypeError, KeyError) as exc:
            self._abort(step, run, exc, ErrorCatalog.SETTLEMENT_STEP_FAILED.code)
            raise AppError(
                ErrorCatalog.SETTLEMENT_STEP_FAILED,
                details={"step": step, "reason": str(exc), "type": exc.__class__.__name__},
            ) from exc

    def _abort(self, step: str, run: _PipelineRun, exc: Exception, code: str) -> None:
        self.db.rollback()
        metrics.record_settlement("failed")
        log_json(
            logger,
            {
                "event": "settlement_step_failed",
                **run.log_context,
                "step": step,
                "error_code": code,
                "error_class": exc.__class__.__name__,
                "reason": str(exc),
            },
            level=logging.ERROR,
        )

    @staticmethod
    def _log_context(request: SettlementRequest) -> dict:
        session = request.checkout_session
        return {
            "business_id": request.business.business_id,
            "checkout_session_id": str(session.id) if session is not None else None,
            "business_date": request.business_date.isoformat(),
        }

    def _step_receipt_number(self, run: _PipelineRun) -> None:
        request = run.request
        try:
            existing = self.sales.count_for_business_date(request.business.business_id, request.business_date)
        except SQLAlchemyError as exc:
            self.db.rollback()
            existing = None
            log_json(
                logger,
                {
                    "event": "receipt_sequence_unavailable",
                    **run.log_context,
                    "reason": str(exc),
                },
                level=logging.WARNING,
            )
        run.receipt_number = generate_receipt_number(
            request.business.receipt_prefix,
            request.business_date,
            existing,
        )

    def _step_sale(self, run: _PipelineRun) -> None:
        request = run.request
        collector = request.collector
        session = request.checkout_session
        run.sale = self.sales.add_sale(
            Sale(
                business_id=request.business.business_id,
                cashier_user_id=request.cashier_user_id,
                checkout_session_id=session.id if session is not None else None,
                loyalty_account_id=request.loyalty.account_id,
                receipt_number=run.receipt_number,
                business_date=request.business_date,
                subtotal=float(request.draft.subtotal),
                tax=float(request.tax.total_tax),
                discount=float(request.draft.discount_amount),
                loyalty_discount=float(collector.total_loyalty_redeemed if request.loyalty.applies else ZERO),
                tip_amount=float(collector.tip),
                total=float(collector.display_total),
                change_given=float(collector.change_owed),
                item_count=request.draft.item_count,
                payment_status="completed",
                notes=request.notes,
                created_at=run.started_at,
            )
        )

    def _step_receipt(self, run: _PipelineRun) -> None:
        request = run.request
        collector = request.collector
        customer = None
        if request.loyalty.applies:
            account = self.loyalty.get_account(request.loyalty.account_id, request.business.business_id)
            if account is not None:
                customer = account
        run.receipt = self.sales.add_receipt(
            Receipt(
                business_id=request.business.business_id,
                sale_id=run.sale.id,
                receipt_number=run.receipt_number,
                qr_code=receipt_qr_payload(run.receipt_number, request.business.business_id),
                subtotal=float(request.draft.subtotal),
                discount_amount=float(request.draft.discount_amount),
                loyalty_redemption=run.sale.loyalty_discount,
                tax_amount=float(request.tax.total_tax),
                tip_amount=float(collector.tip),
                total=float(collector.display_total),
                change_given=float(collector.change_owed),
                aggregated_taxes={name: float(amount) for name, amount in request.tax.aggregated_taxes.items()},
                aggregated_rebates={name: float(amount) for name, amount in request.tax.aggregated_rebates.items()},
                items=[
                    {
                        "sku": item.sku,
                        "name": item.name,
                        "quantity": item.quantity,
                        "unit_price": float(item.unit_price),
                        "total_price": float(item.line_total),
                    }
                    for item in request.draft.items
                ],
                payment_methods=[
                    {
                        "method": tender.method,
                        "amount": float(tender.amount),
                        "custom_name": tender.custom_name,
                        "tip_amount": float(tender.tip_amount),
                    }
                    for tender in collector.tenders
                ],
                customer_name=customer.customer_name if customer else None,
                customer_email=customer.customer_email if customer else None,
                customer_phone=customer.customer_phone if customer else None,
                employee_name=request.cashier_name,
                business_name=request.business.name,
                cash_rounding_applied=collector.cash_rounding_applied,
                created_at=run.started_at,
            )
        )

    def _step_line_items(self, run: _PipelineRun) -> None:
        request = run.request
        self.sales.add_items(
            [
                SaleItem(
                    business_id=request.business.business_id,
                    sale_id=run.sale.id,
                    line_number=index,
                    sku=item.sku,
                    name=item.name,
                    category_id=item.category_id,
                    quantity=item.quantity,
                    unit_price=float(item.unit_price),
                    total_price=float(item.line_total),
                )
                for index, item in enumerate(request.draft.items, start=1)
            ]
        )

    def _step_tenders(self, run: _PipelineRun) -> None:
        request = run.request
        collector = request.collector
        tenders = collector.tenders
        last_index = len(tenders) - 1
        self.sales.add_tenders(
            [
                SaleTender(
                    business_id=request.business.business_id,
                    sale_id=run.sale.id,
                    sequence=index + 1,
                    payment_method=tender.method,
                    amount=float(tender.amount),
                    custom_method_name=tender.custom_name,
                    tip_amount=float(tender.tip_amount),
                    change_given=float(collector.change_owed) if index == last_index else 0.0,
                    manager_override=tender.manager_override,
                    processed_by=request.cashier_user_id,
                    processed_at=tender.recorded_at,
                )
                for index, tender in enumerate(tenders)
            ]
        )

    def _step_loyalty(self, run: _PipelineRun) -> None:
        request = run.request
        quote = request.loyalty
        settings = request.loyalty_settings
        if not quote.applies or settings is None:
            return
        business_id = request.business.business_id
        redeemed = request.collector.total_loyalty_redeemed

        account = self.loyalty.get_account(quote.account_id, business_id, for_update=True)
        if account is None:
            raise AppError(ErrorCatalog.LOYALTY_ACCOUNT_NOT_FOUND, details={"loyalty_account_id": quote.account_id})

        snapshot = LoyaltyAccountSnapshot(
            id=str(account.id),
            balance=to_decimal(account.balance),
            pending_earned=self.loyalty.pending_earned_total(account.id, request.business_date),
        )
        plan = plan_ledger(
            snapshot,
            settings,
            subtotal=request.draft.subtotal,
            redeemed=redeemed,
            sale_date=request.business_date,
            receipt_number=run.receipt_number,
        )

        if plan.redeemed > 0:
            cap = settings.daily_limit_dollars
            applied = self.loyalty.increment_daily_usage(
                business_id=business_id,
                account_id=account.id,
                usage_date=request.business_date,
                amount=plan.redeemed,
                cap=cap,
            )
            if not applied:
                raise AppError(
                    ErrorCatalog.LOYALTY_DAILY_LIMIT_EXCEEDED,
                    details={
                        "loyalty_account_id": snapshot.id,
                        "requested": plan.redeemed,
                        "daily_limit": cap,
                    },
                )

        for entry in plan.entries:
            self.loyalty.add_transaction(
                LoyaltyTransaction(
                    business_id=business_id,
                    loyalty_account_id=account.id,
                    sale_id=run.sale.id,
                    transaction_type=entry.transaction_type,
                    amount=float(entry.amount),
                    points=entry.points,
                    balance_before=float(entry.balance_before),
                    balance_after=float(entry.balance_after),
                    points_before=entry.points_before,
                    points_after=entry.points_after,
                    earned_date=entry.earned_date,
                    expires_at=entry.expires_at,
                    description=entry.description,
                    processed_by=request.cashier_user_id,
                    created_at=run.started_at,
                )
            )

        sign = -1 if to_decimal(account.balance) < 0 else 1
        account.balance = float(plan.balance_after * sign)
        account.total_earned = float(quantize_money(to_decimal(account.total_earned) + plan.earned))
        account.total_spent = float(quantize_money(to_decimal(account.total_spent) + plan.redeemed))
        account.last_activity_at = run.started_at
        self.loyalty.save_account(account)
        run.points_earned = plan.points_earned

    def _step_commit(self, run: _PipelineRun) -> None:
        session = run.request.checkout_session
        if session is not None:
            session.status = "SETTLED"
            session.sale_id = run.sale.id
            session.result = run.result.to_state()
            session.updated_at = datetime.utcnow()
            self.db.add(session)
        self.db.commit()
