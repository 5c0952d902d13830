from fastapi import APIRouter, Depends, Request

from app.tillbook.db.session import get_db
from app.tillbook.schemas.auth import LoginRequest, TokenResponse
from app.tillbook.services.auth import AuthService

router = APIRouter()


@router.post("/login", response_model=TokenResponse, summary="Staff login (JSON)")
def login(request: Request, payload: LoginRequest, db=Depends(get_db)):
    trace_id = getattr(request.state, "trace_id", "")
    user, token = AuthService(db, trace_id=trace_id).login(payload.identifier, payload.password)
    return TokenResponse(access_token=token, business_id=str(user.business_id), role=user.role, trace_id=trace_id)
