from fastapi import FastAPI

from app.tillbook.api import api_router
from app.tillbook.core.config import settings
from app.tillbook.core.errors import setup_exception_handlers
from app.tillbook.core.logging import configure_logging
from app.tillbook.middleware.request_logging import RequestLoggingMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(RequestLoggingMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
