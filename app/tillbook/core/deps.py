from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError

from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.core.security import TokenData, decode_token, oauth2_scheme
from app.tillbook.db.session import get_db
from app.tillbook.repos.users import UserRepository


def get_current_token_data(token: str = Depends(oauth2_scheme)) -> TokenData:
    try:
        return TokenData(**decode_token(token))
    except (JWTError, ValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def get_current_user(token_data: TokenData = Depends(get_current_token_data), db=Depends(get_db)):
    user = UserRepository(db).get_by_id(token_data.sub) if token_data.sub else None
    if user is None:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    if str(user.business_id) != token_data.business_id:
        raise AppError(ErrorCatalog.CROSS_BUSINESS_ACCESS_DENIED)
    return user


def require_active_user(request: Request, user=Depends(get_current_user)):
    """Resolve the cashier behind the bearer token and tag the request with it."""
    if not user.is_active:
        raise AppError(ErrorCatalog.USER_INACTIVE)
    request.state.user_id = str(user.id)
    request.state.business_id = str(user.business_id)
    request.state.role = user.role
    return user
