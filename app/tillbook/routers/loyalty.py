from uuid import UUID

from fastapi import APIRouter, Depends, Request

from app.tillbook.core.deps import require_active_user
from app.tillbook.core.money import quantize_money
from app.tillbook.db.session import get_db
from app.tillbook.schemas.loyalty import LoyaltyAccountResponse, LoyaltyTransactionResponse
from app.tillbook.services.loyalty_accounts import LoyaltyAccountService

router = APIRouter()


@router.get("/tillbook/loyalty/accounts/{account_id}", response_model=LoyaltyAccountResponse)
def get_loyalty_account(
    request: Request,
    account_id: UUID,
    current_user=Depends(require_active_user),
    db=Depends(get_db),
):
    summary = LoyaltyAccountService(db, str(current_user.business_id)).summary(str(account_id))
    account = summary.account
    return LoyaltyAccountResponse(
        id=str(account.id),
        customer_name=account.customer_name,
        customer_email=account.customer_email,
        customer_phone=account.customer_phone,
        as_of=summary.as_of,
        balance=summary.balance,
        points=summary.points,
        pending_credit=summary.pending_credit,
        spendable=summary.spendable,
        used_today=summary.used_today,
        remaining_daily=summary.remaining_daily,
        total_earned=quantize_money(account.total_earned),
        total_spent=quantize_money(account.total_spent),
        last_activity_at=account.last_activity_at,
        transactions=[
            LoyaltyTransactionResponse(
                id=str(row.id),
                sale_id=str(row.sale_id) if row.sale_id else None,
                transaction_type=row.transaction_type,
                amount=quantize_money(row.amount),
                points=row.points,
                balance_before=quantize_money(row.balance_before),
                balance_after=quantize_money(row.balance_after),
                points_before=row.points_before,
                points_after=row.points_after,
                earned_date=row.earned_date,
                expires_at=row.expires_at,
                description=row.description,
                created_at=row.created_at,
            )
            for row in summary.transactions
        ],
        trace_id=getattr(request.state, "trace_id", ""),
    )
