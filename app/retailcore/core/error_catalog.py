from dataclasses import dataclass

from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    EMPTY_CART = ErrorDefinition("EMPTY_CART", "Cart is empty", status.HTTP_422_UNPROCESSABLE_ENTITY)
    INVALID_PHONE = ErrorDefinition(
        "INVALID_PHONE",
        "Payer phone number is invalid",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INVALID_AMOUNT = ErrorDefinition(
        "INVALID_AMOUNT",
        "Mobile-money amount must be a whole number of at least 1",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    TOTALS_MISMATCH = ErrorDefinition(
        "TOTALS_MISMATCH",
        "Client totals do not match server totals",
        status.HTTP_409_CONFLICT,
    )
    UNSUPPORTED_PAYMENT_METHOD = ErrorDefinition(
        "UNSUPPORTED_PAYMENT_METHOD",
        "Payment method not supported for this operation",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    PRODUCT_NOT_FOUND = ErrorDefinition("PRODUCT_NOT_FOUND", "Product not found", status.HTTP_404_NOT_FOUND)
    CUSTOMER_NOT_FOUND = ErrorDefinition("CUSTOMER_NOT_FOUND", "Customer not found", status.HTTP_404_NOT_FOUND)
    BRANCH_NOT_FOUND = ErrorDefinition("BRANCH_NOT_FOUND", "Branch not found", status.HTTP_404_NOT_FOUND)
    INVOICE_NOT_FOUND = ErrorDefinition("INVOICE_NOT_FOUND", "Invoice not found", status.HTTP_404_NOT_FOUND)
    STOCK_REQUEST_NOT_FOUND = ErrorDefinition(
        "STOCK_REQUEST_NOT_FOUND",
        "Stock request not found",
        status.HTTP_404_NOT_FOUND,
    )
    SALE_NOT_FOUND = ErrorDefinition("SALE_NOT_FOUND", "Sale not found", status.HTTP_404_NOT_FOUND)
    PAYMENT_NOT_FOUND = ErrorDefinition("PAYMENT_NOT_FOUND", "Payment not found", status.HTTP_404_NOT_FOUND)
    RECONCILIATION_ITEM_NOT_FOUND = ErrorDefinition(
        "RECONCILIATION_ITEM_NOT_FOUND",
        "Reconciliation item not found",
        status.HTTP_404_NOT_FOUND,
    )
    RECONCILIATION_ITEM_RESOLVED = ErrorDefinition(
        "RECONCILIATION_ITEM_RESOLVED",
        "Reconciliation item already resolved",
        status.HTTP_409_CONFLICT,
    )
    INSUFFICIENT_STOCK = ErrorDefinition(
        "INSUFFICIENT_STOCK",
        "Insufficient stock",
        status.HTTP_409_CONFLICT,
    )
    SETTLEMENT_SOURCE_NOT_PAYABLE = ErrorDefinition(
        "SETTLEMENT_SOURCE_NOT_PAYABLE",
        "Invoice or stock request is not payable",
        status.HTTP_409_CONFLICT,
    )
    INTENT_ALREADY_ACTIVE = ErrorDefinition(
        "INTENT_ALREADY_ACTIVE",
        "A payment request is already awaiting confirmation",
        status.HTTP_409_CONFLICT,
    )
    INTENT_NOT_ACTIVE = ErrorDefinition(
        "INTENT_NOT_ACTIVE",
        "Payment request is not awaiting confirmation",
        status.HTTP_409_CONFLICT,
    )
    PAYMENT_INITIATION_FAILED = ErrorDefinition(
        "PAYMENT_INITIATION_FAILED",
        "Could not initiate payment",
        status.HTTP_502_BAD_GATEWAY,
    )
    PAYMENT_FAILED = ErrorDefinition(
        "PAYMENT_FAILED",
        "Payment failed or was cancelled",
        status.HTTP_402_PAYMENT_REQUIRED,
    )
    PAYMENT_TIMED_OUT = ErrorDefinition(
        "PAYMENT_TIMED_OUT",
        "Payment timed out",
        status.HTTP_408_REQUEST_TIMEOUT,
    )
    FULFILLMENT_FAILED = ErrorDefinition(
        "FULFILLMENT_FAILED",
        "Payment succeeded but order could not be fulfilled",
        status.HTTP_409_CONFLICT,
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


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)
