from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.tillbook.core.deps import require_active_user
from app.tillbook.core.error_catalog import ErrorCatalog
from app.tillbook.core.metrics import metrics
from app.tillbook.db.session import get_db
from app.tillbook.schemas.checkout import (
    AuthorizationRequest,
    AuthorizationStateResponse,
    CheckoutSessionCreateRequest,
    CheckoutSessionResponse,
    FinalizeRequest,
    FinalizeResponse,
    LoyaltyQuoteResponse,
    SettlementResultResponse,
    SignOffRequest,
    TaxResponse,
    TenderOutcomeResponse,
    TenderProposalResponse,
    TenderRequest,
    TenderResponse,
    TipRequest,
)
from app.tillbook.schemas.errors import CHECKOUT_ERROR_RESPONSES
from app.tillbook.services.audit import AuditEventPayload, AuditService
from app.tillbook.services.checkout import Checkout, CheckoutService
from app.tillbook.services.idempotency import REPLAY_HEADER, IdempotencyService, extract_idempotency_key
from app.tillbook.services.sale_draft import LineItem, SaleDraft

router = APIRouter(responses=CHECKOUT_ERROR_RESPONSES)


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _start_idempotency(request: Request, db, current_user, payload: dict):
    idempotency_key = extract_idempotency_key(request.headers, required=True)
    context, replay = IdempotencyService(db).start(
        business_id=str(current_user.business_id),
        endpoint=str(request.url.path),
        method=request.method,
        idempotency_key=idempotency_key,
        request_hash=IdempotencyService.fingerprint(payload),
    )
    if replay:
        metrics.increment_idempotency_replay()
        return None, JSONResponse(
            status_code=replay.status_code,
            content=replay.response_body,
            headers={REPLAY_HEADER: ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )
    request.state.idempotency = context
    return context, None


def _draft_from_payload(payload: CheckoutSessionCreateRequest) -> SaleDraft:
    items = [
        LineItem(
            sku=item.sku,
            name=item.name,
            unit_price=item.unit_price,
            quantity=item.quantity,
            category_id=item.category_id,
            tax_rule_ids=tuple(item.tax_rule_ids),
        )
        for item in payload.items
    ]
    return SaleDraft.build(
        items,
        subtotal=payload.subtotal,
        discount_amount=payload.discount_amount,
        loyalty_account_id=payload.loyalty_account_id,
    )


def _session_response(checkout: Checkout, trace_id: str) -> CheckoutSessionResponse:
    collector = checkout.collector
    loyalty = checkout.loyalty
    gate = checkout.gate
    result = checkout.result
    return CheckoutSessionResponse(
        id=str(checkout.record.id),
        business_id=str(checkout.record.business_id),
        status=checkout.record.status,
        business_date=checkout.business_date,
        item_count=checkout.draft.item_count,
        subtotal=checkout.draft.subtotal,
        discount_amount=checkout.draft.discount_amount,
        loyalty_discount=loyalty.auto_applied,
        tax=TaxResponse(
            aggregated_taxes=checkout.tax.aggregated_taxes,
            aggregated_rebates=checkout.tax.aggregated_rebates,
            total_tax=checkout.tax.total_tax,
            degraded=checkout.tax.degraded,
        ),
        tip_amount=collector.tip,
        raw_total=collector.raw_total,
        display_total=collector.display_total,
        total_paid=collector.total_paid,
        remaining_balance=collector.remaining_balance,
        change_owed=collector.change_owed,
        next_default_amount=collector.next_default_amount,
        payable=collector.is_payable(),
        cash_rounding_applied=collector.cash_rounding_applied,
        tenders=[
            TenderResponse(
                index=index,
                method=tender.method,
                amount=tender.amount,
                custom_name=tender.custom_name,
                tip_amount=tender.tip_amount,
                manager_override=tender.manager_override,
                recorded_at=tender.recorded_at,
            )
            for index, tender in enumerate(collector.tenders)
        ],
        loyalty=LoyaltyQuoteResponse(
            account_id=loyalty.account_id,
            balance=loyalty.balance,
            points_balance=loyalty.points_balance,
            available_credit=loyalty.available_credit,
            credit_remaining=collector.loyalty_credit_remaining,
            remaining_daily=loyalty.remaining_daily,
            auto_applied=loyalty.auto_applied,
            min_redemption_dollars=loyalty.min_redemption_dollars,
            allow_partial_redemption=loyalty.allow_partial_redemption,
            points_to_earn=loyalty.points_to_earn,
        ),
        authorization=AuthorizationStateResponse(
            state=gate.state.value,
            reason=gate.reason,
            requested_amount=gate.requested_amount,
            pending=(
                TenderProposalResponse(
                    amount=gate.pending.amount,
                    method=gate.pending.method,
                    custom_name=gate.pending.custom_name,
                )
                if gate.pending
                else None
            ),
        ),
        result=SettlementResultResponse(**result.to_state()) if result else None,
        trace_id=trace_id,
    )


@router.post("/tillbook/checkout/sessions", response_model=CheckoutSessionResponse, status_code=201)
def open_checkout_session(
    request: Request,
    payload: CheckoutSessionCreateRequest,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    context, replay = _start_idempotency(request, db, current_user, payload.model_dump(mode="json"))
    if replay:
        return replay

    service = CheckoutService(db, user=current_user, trace_id=_trace_id(request))
    checkout = service.open_session(_draft_from_payload(payload))
    response = _session_response(checkout, _trace_id(request))
    context.record_success(status_code=201, response_body=response.model_dump(mode="json"))
    return response


@router.get("/tillbook/checkout/sessions/{session_id}", response_model=CheckoutSessionResponse)
def get_checkout_session(
    request: Request,
    session_id: UUID,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    service = CheckoutService(db, user=current_user, trace_id=_trace_id(request))
    return _session_response(service.get(str(session_id)), _trace_id(request))


@router.post("/tillbook/checkout/sessions/{session_id}/tip", response_model=CheckoutSessionResponse)
def set_tip(
    request: Request,
    session_id: UUID,
    payload: TipRequest,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    context, replay = _start_idempotency(request, db, current_user, payload.model_dump(mode="json"))
    if replay:
        return replay

    service = CheckoutService(db, user=current_user, trace_id=_trace_id(request))
    checkout = service.set_tip(str(session_id), payload.tip_amount)
    response = _session_response(checkout, _trace_id(request))
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    return response


@router.post("/tillbook/checkout/sessions/{session_id}/tenders", response_model=TenderOutcomeResponse)
def propose_tender(
    request: Request,
    session_id: UUID,
    payload: TenderRequest,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    context, replay = _start_idempotency(request, db, current_user, payload.model_dump(mode="json"))
    if replay:
        return replay

    service = CheckoutService(db, user=current_user, trace_id=_trace_id(request))
    checkout, outcome = service.propose_tender(
        str(session_id),
        amount=payload.amount,
        method=payload.method,
        custom_name=payload.custom_name,
    )
    response = TenderOutcomeResponse(status=outcome.status, session=_session_response(checkout, _trace_id(request)))
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    return response


@router.delete("/tillbook/checkout/sessions/{session_id}/tenders/{index}", response_model=CheckoutSessionResponse)
def remove_tender(
    request: Request,
    session_id: UUID,
    index: int,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    context, replay = _start_idempotency(request, db, current_user, {"index": index})
    if replay:
        return replay

    service = CheckoutService(db, user=current_user, trace_id=_trace_id(request))
    checkout = service.remove_tender(str(session_id), index)
    response = _session_response(checkout, _trace_id(request))
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    return response


@router.post("/tillbook/checkout/sessions/{session_id}/authorization", response_model=TenderOutcomeResponse)
def submit_authorization(
    request: Request,
    session_id: UUID,
    payload: AuthorizationRequest,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    context, replay = _start_idempotency(request, db, current_user, {"pin": IdempotencyService.fingerprint(payload.pin)})
    if replay:
        return replay

    service = CheckoutService(db, user=current_user, trace_id=_trace_id(request))
    checkout, outcome = service.submit_authorization(str(session_id), payload.pin)
    response = TenderOutcomeResponse(
        status=outcome.status if outcome else "accepted",
        session=_session_response(checkout, _trace_id(request)),
    )
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    return response


@router.post("/tillbook/checkout/sessions/{session_id}/authorization/request", response_model=CheckoutSessionResponse)
def request_sign_off(
    request: Request,
    session_id: UUID,
    payload: SignOffRequest,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    context, replay = _start_idempotency(request, db, current_user, payload.model_dump(mode="json"))
    if replay:
        return replay

    service = CheckoutService(db, user=current_user, trace_id=_trace_id(request))
    checkout = service.request_sign_off(str(session_id), payload.reason, payload.amount)
    response = _session_response(checkout, _trace_id(request))
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    return response


@router.delete("/tillbook/checkout/sessions/{session_id}/authorization", response_model=CheckoutSessionResponse)
def dismiss_authorization(
    request: Request,
    session_id: UUID,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    context, replay = _start_idempotency(request, db, current_user, {})
    if replay:
        return replay

    service = CheckoutService(db, user=current_user, trace_id=_trace_id(request))
    checkout = service.dismiss_authorization(str(session_id))
    response = _session_response(checkout, _trace_id(request))
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    return response


@router.post("/tillbook/checkout/sessions/{session_id}/finalize", response_model=FinalizeResponse)
def finalize_checkout_session(
    request: Request,
    session_id: UUID,
    payload: FinalizeRequest | None = None,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    payload = payload or FinalizeRequest()
    context, replay = _start_idempotency(request, db, current_user, payload.model_dump(mode="json"))
    if replay:
        return replay

    trace_id = _trace_id(request)
    service = CheckoutService(db, user=current_user, trace_id=trace_id)
    checkout, result, replayed = service.finalize(str(session_id), notes=payload.notes)
    response = FinalizeResponse(
        **result.to_state(),
        checkout_session_id=str(session_id),
        replayed=replayed,
        trace_id=trace_id,
    )
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    if not replayed:
        AuditService(db).record_event(
            AuditEventPayload(
                business_id=str(current_user.business_id),
                user_id=str(current_user.id),
                trace_id=trace_id or None,
                actor=current_user.username,
                action="checkout.sale.settled",
                entity_type="sale",
                entity_id=result.sale_id,
                before={"checkout_session_id": str(session_id)},
                after={
                    "receipt_number": result.receipt_number,
                    "final_total": result.final_total,
                    "change_owed": result.change_owed,
                    "tenders": len(checkout.collector.tenders),
                    "loyalty_redeemed": result.loyalty_redeemed,
                    "loyalty_points_earned": result.loyalty_points_earned,
                },
                metadata=None,
                result="success",
                actor_role=current_user.role,
            )
        )
    return response
