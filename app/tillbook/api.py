from fastapi import APIRouter

from app.tillbook.routers.auth import router as auth_router
from app.tillbook.routers.checkout import router as checkout_router
from app.tillbook.routers.health import router as ops_router
from app.tillbook.routers.loyalty import router as loyalty_router

api_router = APIRouter()
api_router.include_router(ops_router, tags=["ops"])
api_router.include_router(auth_router, prefix="/tillbook/auth", tags=["auth"])
api_router.include_router(checkout_router, tags=["checkout"])
api_router.include_router(loyalty_router, tags=["loyalty"])
