from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from app.tillbook.core.config import settings

# Staff passwords and manager PINs share one hashing policy.
secret_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/tillbook/auth/login")


class TokenData(BaseModel):
    sub: str
    business_id: str
    role: str
    username: str


def hash_secret(secret: str) -> str:
    return secret_context.hash(secret)


def verify_secret(candidate: str, hashed: str | None) -> bool:
    if not candidate or not hashed:
        return False
    return secret_context.verify(candidate, hashed)


def issue_staff_token(user, expires_in: timedelta | None = None) -> str:
    """Sign a bearer token that pins the cashier to their business."""
    lifetime = expires_in or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = TokenData(
        sub=str(user.id),
        business_id=str(user.business_id),
        role=user.role,
        username=user.username,
    ).model_dump()
    claims["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
