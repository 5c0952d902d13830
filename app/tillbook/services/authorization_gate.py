from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Protocol

from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.core.security import verify_secret
from app.tillbook.repos.users import UserRepository
from app.tillbook.services.tender_collector import TenderCollector, TenderOutcome, TenderProposal

REASON_NON_CASH_OVERPAYMENT = "non_cash_overpayment"

ACTION_APPROVED = "checkout.manager_override.approved"
ACTION_DENIED = "checkout.manager_override.denied"


class AuthorizationState(str, Enum):
    IDLE = "idle"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    DENIED = "denied"


class IdentityStore(Protocol):
    def validate_manager_credential(self, pin: str) -> bool: ...


class UserIdentityStore:
    """Matches a PIN against the active managers of one business."""

    def __init__(self, db, business_id: str):
        self.repo = UserRepository(db)
        self.business_id = business_id
        self.matched_user = None

    def validate_manager_credential(self, pin: str) -> bool:
        self.matched_user = None
        if not pin:
            return False
        for manager in self.repo.list_active_managers(self.business_id):
            if verify_secret(pin, manager.hashed_pin):
                self.matched_user = manager
                return True
        return False


@dataclass(frozen=True)
class AuthorizationAuditEvent:
    action: str
    result: str
    reason: str
    amount: Decimal | None
    method: str | None
    manager_user_id: str | None = None


@dataclass(frozen=True)
class AuthorizationDecision:
    approved: bool
    state: AuthorizationState
    outcome: TenderOutcome | None
    audit_event: AuthorizationAuditEvent


class AuthorizationGate:
    """Manager sign-off for tender actions the collector will not take alone.

    Idle -> PendingApproval on request; a matching credential approves and
    replays the pending proposal, then returns to Idle. A mismatch records a
    denial and leaves the request pending.
    """

    def __init__(
        self,
        *,
        state: AuthorizationState = AuthorizationState.IDLE,
        pending: TenderProposal | None = None,
        reason: str | None = None,
        requested_amount: Decimal | None = None,
        audit_sink: Callable[[AuthorizationAuditEvent], None] | None = None,
    ):
        self.state = state
        self.pending = pending
        self.reason = reason
        self.requested_amount = requested_amount
        self.audit_sink = audit_sink
        self.last_result: AuthorizationState | None = None

    @property
    def is_pending(self) -> bool:
        return self.state == AuthorizationState.PENDING_APPROVAL

    def request(self, proposal: TenderProposal, reason: str = REASON_NON_CASH_OVERPAYMENT) -> None:
        self._enter_pending(reason, proposal.amount)
        self.pending = proposal

    def request_sign_off(self, reason: str, amount=None) -> None:
        self._enter_pending(reason, amount)
        self.pending = None

    def _enter_pending(self, reason: str, amount) -> None:
        if self.is_pending:
            raise AppError(ErrorCatalog.AUTHORIZATION_PENDING, details={"reason": self.reason})
        self.state = AuthorizationState.PENDING_APPROVAL
        self.reason = reason
        self.requested_amount = amount

    def submit_credential(
        self,
        pin: str,
        identity_store: IdentityStore,
        collector: TenderCollector | None = None,
    ) -> AuthorizationDecision:
        if not self.is_pending:
            raise AppError(ErrorCatalog.AUTHORIZATION_NOT_PENDING)

        if not identity_store.validate_manager_credential(pin):
            self.last_result = AuthorizationState.DENIED
            event = self._record(ACTION_DENIED, "denied", identity_store)
            # Denial is transient; the request stays open for another attempt.
            self.state = AuthorizationState.PENDING_APPROVAL
            return AuthorizationDecision(False, AuthorizationState.DENIED, None, event)

        self.state = AuthorizationState.APPROVED
        self.last_result = AuthorizationState.APPROVED
        event = self._record(ACTION_APPROVED, "success", identity_store)
        proposal = self.pending
        self._reset()
        outcome = None
        if proposal is not None and collector is not None:
            outcome = collector.propose(proposal, authorized=True)
        return AuthorizationDecision(True, AuthorizationState.APPROVED, outcome, event)

    def dismiss(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.state = AuthorizationState.IDLE
        self.pending = None
        self.reason = None
        self.requested_amount = None

    def _record(self, action: str, result: str, identity_store) -> AuthorizationAuditEvent:
        matched = getattr(identity_store, "matched_user", None)
        event = AuthorizationAuditEvent(
            action=action,
            result=result,
            reason=self.reason or "",
            amount=self.requested_amount,
            method=self.pending.method if self.pending else None,
            manager_user_id=str(matched.id) if matched is not None else None,
        )
        if self.audit_sink is not None:
            self.audit_sink(event)
        return event

    def to_state(self) -> dict:
        return {
            "state": self.state.value,
            "pending": self.pending.to_state() if self.pending else None,
            "reason": self.reason,
            "requested_amount": None if self.requested_amount is None else str(self.requested_amount),
        }

    @classmethod
    def from_state(cls, state: dict | None, **kwargs) -> "AuthorizationGate":
        state = state or {}
        pending = state.get("pending")
        amount = state.get("requested_amount")
        return cls(
            state=AuthorizationState(state.get("state", AuthorizationState.IDLE.value)),
            pending=TenderProposal.from_state(pending) if pending else None,
            reason=state.get("reason"),
            requested_amount=None if amount is None else Decimal(amount),
            **kwargs,
        )
