from pydantic import BaseModel


class ErrorBody(BaseModel):
    """Envelope every failed tillbook request returns."""

    model_config = {
        "json_schema_extra": {
            "example": {
                "code": "LOYALTY_DAILY_LIMIT_EXCEEDED",
                "message": "Daily loyalty redemption limit exceeded",
                "details": {"requested": "30.00", "daily_limit": "50.00"},
                "trace_id": "trace-123",
            }
        }
    }

    code: str
    message: str
    details: dict | None = None
    trace_id: str | None = None


class FieldError(BaseModel):
    field: str | None = None
    message: str
    type: str
    loc: list[str | int] | None = None
    input: object | None = None
    ctx: dict | None = None


class ValidationErrorBody(ErrorBody):
    details: dict[str, list[FieldError]] | None = None


CHECKOUT_ERROR_RESPONSES = {
    401: {"model": ErrorBody, "description": "Missing or invalid bearer token"},
    404: {"model": ErrorBody, "description": "Checkout session not found"},
    409: {"model": ErrorBody, "description": "Session closed, authorization state conflict or idempotency conflict"},
    422: {"model": ValidationErrorBody, "description": "Tender or loyalty validation failed"},
}
