from dataclasses import dataclass

from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    INVALID_CREDENTIALS = ErrorDefinition(
        "INVALID_CREDENTIALS",
        "Invalid credentials",
        status.HTTP_401_UNAUTHORIZED,
    )
    USER_INACTIVE = ErrorDefinition(
        "USER_INACTIVE",
        "User is inactive",
        status.HTTP_403_FORBIDDEN,
    )
    CROSS_BUSINESS_ACCESS_DENIED = ErrorDefinition(
        "CROSS_BUSINESS_ACCESS_DENIED",
        "Cross-business access denied",
        status.HTTP_403_FORBIDDEN,
    )
    BUSINESS_NOT_FOUND = ErrorDefinition(
        "BUSINESS_NOT_FOUND",
        "Business not found",
        status.HTTP_404_NOT_FOUND,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    IDEMPOTENCY_KEY_REQUIRED = ErrorDefinition(
        "IDEMPOTENCY_KEY_REQUIRED",
        "Idempotency key required",
        status.HTTP_400_BAD_REQUEST,
    )
    IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD = ErrorDefinition(
        "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "Idempotency key reused with different payload",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REQUEST_IN_PROGRESS = ErrorDefinition(
        "IDEMPOTENCY_REQUEST_IN_PROGRESS",
        "Idempotency request already in progress",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )

    TENDER_INVALID_AMOUNT = ErrorDefinition(
        "TENDER_INVALID_AMOUNT",
        "Tender amount must be greater than 0",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    TENDER_MISSING_CUSTOM_NAME = ErrorDefinition(
        "TENDER_MISSING_CUSTOM_NAME",
        "Custom tender requires a method name",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    TENDER_UNKNOWN_METHOD = ErrorDefinition(
        "TENDER_UNKNOWN_METHOD",
        "Unknown tender method",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    TENDER_NOT_FOUND = ErrorDefinition(
        "TENDER_NOT_FOUND",
        "Tender not found",
        status.HTTP_404_NOT_FOUND,
    )
    TIP_LOCKED = ErrorDefinition(
        "TIP_LOCKED",
        "Tip cannot change once tenders are recorded",
        status.HTTP_409_CONFLICT,
    )
    LOYALTY_EXCEEDS_AVAILABLE_CREDIT = ErrorDefinition(
        "LOYALTY_EXCEEDS_AVAILABLE_CREDIT",
        "Loyalty tender exceeds available credit",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    LOYALTY_BELOW_MINIMUM_REDEMPTION = ErrorDefinition(
        "LOYALTY_BELOW_MINIMUM_REDEMPTION",
        "Loyalty tender is below the minimum redemption",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    LOYALTY_INSUFFICIENT_BALANCE = ErrorDefinition(
        "LOYALTY_INSUFFICIENT_BALANCE",
        "Loyalty balance cannot cover the redemption",
        status.HTTP_409_CONFLICT,
    )
    LOYALTY_DAILY_LIMIT_EXCEEDED = ErrorDefinition(
        "LOYALTY_DAILY_LIMIT_EXCEEDED",
        "Daily loyalty redemption limit exceeded",
        status.HTTP_409_CONFLICT,
    )
    LOYALTY_ACCOUNT_NOT_FOUND = ErrorDefinition(
        "LOYALTY_ACCOUNT_NOT_FOUND",
        "Loyalty account not found",
        status.HTTP_404_NOT_FOUND,
    )
    AUTHORIZATION_NOT_PENDING = ErrorDefinition(
        "AUTHORIZATION_NOT_PENDING",
        "No manager authorization is pending",
        status.HTTP_409_CONFLICT,
    )
    AUTHORIZATION_PENDING = ErrorDefinition(
        "AUTHORIZATION_PENDING",
        "Manager authorization is pending",
        status.HTTP_409_CONFLICT,
    )
    MANAGER_CREDENTIAL_INVALID = ErrorDefinition(
        "MANAGER_CREDENTIAL_INVALID",
        "Invalid manager PIN",
        status.HTTP_403_FORBIDDEN,
    )
    CHECKOUT_SESSION_NOT_FOUND = ErrorDefinition(
        "CHECKOUT_SESSION_NOT_FOUND",
        "Checkout session not found",
        status.HTTP_404_NOT_FOUND,
    )
    CHECKOUT_SESSION_CLOSED = ErrorDefinition(
        "CHECKOUT_SESSION_CLOSED",
        "Checkout session is already settled",
        status.HTTP_409_CONFLICT,
    )
    SETTLEMENT_BALANCE_OUTSTANDING = ErrorDefinition(
        "SETTLEMENT_BALANCE_OUTSTANDING",
        "Payment incomplete; add tenders to cover the total",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    SETTLEMENT_STEP_FAILED = ErrorDefinition(
        "SETTLEMENT_STEP_FAILED",
        "Sale settlement failed",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)
