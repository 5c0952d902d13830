from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from app.tillbook.core.config import settings
from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.core.logging import log_json
from app.tillbook.core.metrics import metrics
from app.tillbook.core.money import quantize_money
from app.tillbook.db.models import CheckoutSession
from app.tillbook.repos.businesses import BusinessRepository
from app.tillbook.repos.checkout_sessions import CheckoutSessionRepository
from app.tillbook.repos.loyalty import LoyaltyRepository
from app.tillbook.services.audit import AuditEventPayload, AuditService
from app.tillbook.services.authorization_gate import AuthorizationAuditEvent, AuthorizationGate, UserIdentityStore
from app.tillbook.services.loyalty_ledger import (
    NO_LOYALTY,
    LoyaltyAccountSnapshot,
    LoyaltyQuote,
    LoyaltySettings,
    quote_loyalty,
)
from app.tillbook.services.sale_draft import BusinessSettings, SaleDraft
from app.tillbook.services.settlement import SettlementFinalizer, SettlementRequest, SettlementResult
from app.tillbook.services.tax_oracle import RuleTaxOracle, TaxCalculation, TaxRuleConfig, TaxService
from app.tillbook.services.tender_collector import OUTCOME_AUTHORIZATION_REQUIRED, TenderCollector, TenderOutcome

logger = logging.getLogger(__name__)

STATUS_OPEN = "OPEN"
STATUS_SETTLED = "SETTLED"


class BusinessTaxOracle:
    """Loads the business's active tax rules on each call."""

    def __init__(self, db, business_id: str):
        self.repo = BusinessRepository(db)
        self.business_id = business_id

    def compute_tax(self, items, discount, loyalty_redeemed, subtotal) -> TaxCalculation:
        try:
            records = self.repo.list_active_tax_rules(self.business_id)
        except SQLAlchemyError:
            self.repo.db.rollback()
            raise
        rules = [TaxRuleConfig.from_record(rule) for rule in records]
        return RuleTaxOracle(rules).compute_tax(items, discount, loyalty_redeemed, subtotal)


@dataclass
class Checkout:
    record: CheckoutSession
    business: BusinessSettings
    business_date: date
    draft: SaleDraft
    tax: TaxCalculation
    loyalty: LoyaltyQuote
    loyalty_settings: LoyaltySettings | None
    collector: TenderCollector
    gate: AuthorizationGate

    @property
    def settled(self) -> bool:
        return self.record.status == STATUS_SETTLED

    @property
    def result(self) -> SettlementResult | None:
        if not self.record.result:
            return None
        return SettlementResult.from_state(self.record.result)

    def to_state(self) -> dict:
        return {
            "business_date": self.business_date.isoformat(),
            "draft": self.draft.to_state(),
            "tax": self.tax.to_state(),
            "loyalty": self.loyalty.to_state(),
            "loyalty_settings": self.loyalty_settings.to_state() if self.loyalty_settings else None,
            "collector": self.collector.to_state(),
            "authorization": self.gate.to_state(),
        }


class CheckoutService:
    def __init__(self, db, *, user, trace_id: str | None = None):
        self.db = db
        self.user = user
        self.trace_id = trace_id
        self.business_id = str(user.business_id)
        self.sessions = CheckoutSessionRepository(db)
        self.businesses = BusinessRepository(db)
        self.loyalty_repo = LoyaltyRepository(db)

    def _business(self) -> BusinessSettings:
        business = self.businesses.get_by_id(self.business_id)
        if business is None:
            raise AppError(ErrorCatalog.BUSINESS_NOT_FOUND, details={"business_id": self.business_id})
        return BusinessSettings.from_record(business)

    def _log_context(self, **extra) -> dict:
        return {"business_id": self.business_id, "user_id": str(self.user.id), "trace_id": self.trace_id, **extra}

    def quote_loyalty(
        self, draft: SaleDraft, business_date: date
    ) -> tuple[LoyaltyQuote, LoyaltySettings | None]:
        if not draft.loyalty_account_id:
            return NO_LOYALTY, None
        try:
            record = self.loyalty_repo.get_settings(self.business_id)
            account = self.loyalty_repo.get_account(draft.loyalty_account_id, self.business_id)
            if record is None or account is None:
                log_json(
                    logger,
                    {
                        "event": "loyalty_unavailable",
                        **self._log_context(loyalty_account_id=draft.loyalty_account_id),
                        "reason": "settings missing" if record is None else "account missing",
                    },
                    level=logging.WARNING,
                )
                return NO_LOYALTY, None
            loyalty_settings = LoyaltySettings.from_record(record)
            snapshot = LoyaltyAccountSnapshot(
                id=str(account.id),
                balance=quantize_money(account.balance),
                used_today=self.loyalty_repo.get_daily_usage(account.id, business_date),
                pending_earned=self.loyalty_repo.pending_earned_total(account.id, business_date),
                customer_name=account.customer_name,
                customer_email=account.customer_email,
                customer_phone=account.customer_phone,
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            log_json(
                logger,
                {
                    "event": "loyalty_unavailable",
                    **self._log_context(loyalty_account_id=draft.loyalty_account_id),
                    "reason": str(exc),
                },
                level=logging.WARNING,
            )
            return NO_LOYALTY, None
        quote = quote_loyalty(draft.subtotal, loyalty_settings, snapshot, discount=draft.discount_amount)
        return quote, loyalty_settings if quote.applies else None

    def _compute_tax(
        self, draft: SaleDraft, loyalty: LoyaltyQuote, *, last_known: TaxCalculation | None = None, **log_extra
    ) -> TaxCalculation:
        return TaxService(BusinessTaxOracle(self.db, self.business_id)).compute(
            draft.items,
            discount=draft.discount_amount,
            loyalty_redeemed=loyalty.auto_applied,
            subtotal=draft.subtotal,
            last_known=last_known,
            context=self._log_context(**log_extra),
        )

    def _refresh_degraded_tax(self, checkout: Checkout) -> None:
        """Retry the oracle for a session opened on fallback tax, while no tender pins the total."""
        if not checkout.tax.degraded or checkout.collector.tenders:
            return
        checkout.tax = self._compute_tax(
            checkout.draft,
            checkout.loyalty,
            last_known=checkout.tax,
            checkout_session_id=str(checkout.record.id),
        )
        checkout.collector.reprice(TenderCollector.sale_base(checkout.draft, checkout.tax, checkout.loyalty))

    def open_session(self, draft: SaleDraft) -> Checkout:
        business = self._business()
        business_date = business.local_date()
        loyalty, loyalty_settings = self.quote_loyalty(draft, business_date)
        tax = self._compute_tax(draft, loyalty)
        collector = TenderCollector.for_sale(
            draft,
            tax,
            loyalty=loyalty,
            cash_rounding_enabled=business.cash_rounding_enabled,
            max_tenders=settings.CHECKOUT_SESSION_MAX_TENDERS,
            epsilon=settings.SETTLEMENT_EPSILON,
            rounding_increment=settings.CASH_ROUNDING_INCREMENT,
        )
        if business.tip_enabled and business.default_tip_percent > 0:
            collector.set_tip(business.default_tip_percent * collector.base_total)

        checkout = Checkout(
            record=CheckoutSession(
                business_id=self.business_id,
                cashier_user_id=self.user.id,
                status=STATUS_OPEN,
                state={},
            ),
            business=business,
            business_date=business_date,
            draft=draft,
            tax=tax,
            loyalty=loyalty,
            loyalty_settings=loyalty_settings,
            collector=collector,
            gate=AuthorizationGate(),
        )
        checkout.record.state = checkout.to_state()
        checkout.record = self.sessions.create(checkout.record)
        log_json(
            logger,
            {
                "event": "checkout_session_opened",
                **self._log_context(checkout_session_id=str(checkout.record.id)),
                "display_total": str(collector.display_total),
                "tax_degraded": tax.degraded,
                "loyalty_auto_applied": str(loyalty.auto_applied),
            },
        )
        return checkout

    def get(self, session_id: str, *, for_update: bool = False) -> Checkout:
        record = self.sessions.get(session_id, self.business_id, for_update=for_update)
        if record is None:
            raise AppError(ErrorCatalog.CHECKOUT_SESSION_NOT_FOUND, details={"checkout_session_id": session_id})
        state = record.state
        loyalty = LoyaltyQuote.from_state(state.get("loyalty"))
        loyalty_settings = state.get("loyalty_settings")
        return Checkout(
            record=record,
            business=self._business(),
            business_date=date.fromisoformat(state["business_date"]),
            draft=SaleDraft.from_state(state["draft"]),
            tax=TaxCalculation.from_state(state.get("tax")),
            loyalty=loyalty,
            loyalty_settings=LoyaltySettings.from_state(loyalty_settings) if loyalty_settings else None,
            collector=TenderCollector.from_state(
                state["collector"],
                loyalty=loyalty,
                epsilon=settings.SETTLEMENT_EPSILON,
                rounding_increment=settings.CASH_ROUNDING_INCREMENT,
            ),
            gate=AuthorizationGate.from_state(state.get("authorization")),
        )

    def _get_open(self, session_id: str) -> Checkout:
        checkout = self.get(session_id, for_update=True)
        if checkout.settled:
            raise AppError(ErrorCatalog.CHECKOUT_SESSION_CLOSED, details={"checkout_session_id": session_id})
        return checkout

    def _get_unlocked(self, session_id: str) -> Checkout:
        """Open session with no manager decision outstanding."""
        checkout = self._get_open(session_id)
        if checkout.gate.is_pending:
            raise AppError(ErrorCatalog.AUTHORIZATION_PENDING, details={"reason": checkout.gate.reason})
        return checkout

    def _save(self, checkout: Checkout) -> Checkout:
        checkout.record = self.sessions.save_state(checkout.record, checkout.to_state())
        return checkout

    def set_tip(self, session_id: str, amount) -> Checkout:
        checkout = self._get_unlocked(session_id)
        self._refresh_degraded_tax(checkout)
        checkout.collector.set_tip(amount)
        return self._save(checkout)

    def propose_tender(
        self, session_id: str, *, amount, method: str, custom_name: str | None = None
    ) -> tuple[Checkout, TenderOutcome]:
        checkout = self._get_unlocked(session_id)
        self._refresh_degraded_tax(checkout)
        outcome = checkout.collector.propose_tender(amount, method, custom_name)
        if outcome.status == OUTCOME_AUTHORIZATION_REQUIRED:
            checkout.gate.request(outcome.proposal)
        return self._save(checkout), outcome

    def remove_tender(self, session_id: str, index: int) -> Checkout:
        checkout = self._get_unlocked(session_id)
        checkout.collector.remove_tender(index)
        return self._save(checkout)

    def request_sign_off(self, session_id: str, reason: str, amount=None) -> Checkout:
        checkout = self._get_open(session_id)
        checkout.gate.request_sign_off(reason, amount)
        return self._save(checkout)

    def submit_authorization(self, session_id: str, pin: str) -> tuple[Checkout, TenderOutcome | None]:
        checkout = self._get_open(session_id)
        checkout.gate.audit_sink = lambda event: self._record_override(checkout, event)
        try:
            decision = checkout.gate.submit_credential(
                pin,
                UserIdentityStore(self.db, self.business_id),
                checkout.collector,
            )
        except AppError:
            self._save(checkout)
            raise
        self._save(checkout)
        if not decision.approved:
            raise AppError(
                ErrorCatalog.MANAGER_CREDENTIAL_INVALID,
                details={"reason": decision.audit_event.reason, "remaining_balance": checkout.collector.remaining_balance},
            )
        return checkout, decision.outcome

    def dismiss_authorization(self, session_id: str) -> Checkout:
        checkout = self._get_open(session_id)
        checkout.gate.dismiss()
        return self._save(checkout)

    def _record_override(self, checkout: Checkout, event: AuthorizationAuditEvent) -> None:
        metrics.record_manager_override(event.result)
        log_json(
            logger,
            {
                "event": "manager_override",
                **self._log_context(checkout_session_id=str(checkout.record.id)),
                "action": event.action,
                "result": event.result,
                "reason": event.reason,
                "amount": event.amount,
                "method": event.method,
            },
            level=logging.INFO if event.result == "success" else logging.WARNING,
        )
        AuditService(self.db).record_event(
            AuditEventPayload(
                business_id=self.business_id,
                user_id=str(self.user.id),
                trace_id=self.trace_id or None,
                actor=self.user.username,
                action=event.action,
                entity_type="checkout_session",
                entity_id=str(checkout.record.id),
                before=None,
                after=None,
                metadata={
                    "reason": event.reason,
                    "amount": event.amount,
                    "method": event.method,
                    "manager_user_id": event.manager_user_id,
                },
                result=event.result,
                actor_role=self.user.role,
            )
        )

    def finalize(self, session_id: str, *, notes: str | None = None) -> tuple[Checkout, SettlementResult, bool]:
        """Settle the session. The bool is True when the stored result was returned."""
        checkout = self.get(session_id, for_update=True)
        if checkout.settled and checkout.result is not None:
            return checkout, checkout.result, True
        if checkout.gate.is_pending:
            raise AppError(ErrorCatalog.AUTHORIZATION_PENDING, details={"reason": checkout.gate.reason})

        result = SettlementFinalizer(self.db).finalize(
            SettlementRequest(
                business=checkout.business,
                draft=checkout.draft,
                tax=checkout.tax,
                collector=checkout.collector,
                business_date=checkout.business_date,
                loyalty=checkout.loyalty,
                loyalty_settings=checkout.loyalty_settings,
                cashier_user_id=self.user.id,
                cashier_name=self.user.username,
                checkout_session=checkout.record,
                notes=notes,
            )
        )
        return checkout, result, False
