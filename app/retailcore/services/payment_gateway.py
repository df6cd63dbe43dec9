from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Protocol

from app.retailcore.core.error_catalog import AppError, ErrorCatalog

GatewayState = Literal["pending", "completed", "failed"]

_PHONE_SEPARATORS = re.compile(r"[\s\-()+]")
_PHONE_DIGITS = re.compile(r"^\d{9,12}$")


@dataclass(frozen=True)
class GatewayStatus:
    state: GatewayState
    detail: str | None = None
    receipt_number: str | None = None


class GatewayError(Exception):
    """Raised when the provider cannot be reached or answers with an error."""


class GatewayInitiationError(GatewayError):
    pass


class PaymentGateway(Protocol):
    async def initiate(self, amount: Decimal, payer_phone: str) -> str:
        ...

    async def query_status(self, external_reference: str) -> GatewayStatus:
        ...


def normalize_phone(phone: str | None) -> str:
    """Return the payer phone in ``254XXXXXXXXX`` form or raise ``INVALID_PHONE``."""
    digits = _PHONE_SEPARATORS.sub("", phone or "")
    if not _PHONE_DIGITS.match(digits):
        raise AppError(ErrorCatalog.INVALID_PHONE, details={"phone": phone})
    return "254" + digits[-9:]


def validate_amount(amount: Decimal) -> Decimal:
    """Return ``amount`` if it is a whole number of currency units >= 1, else raise ``INVALID_AMOUNT``."""
    value = Decimal(str(amount))
    if value < 1 or value != value.to_integral_value():
        raise AppError(ErrorCatalog.INVALID_AMOUNT, details={"amount": format(value, "f")})
    return value
