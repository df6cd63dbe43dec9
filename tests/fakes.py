from __future__ import annotations

import itertools
from decimal import Decimal

from app.retailcore.services.payment_gateway import GatewayStatus

PENDING = GatewayStatus(state="pending")


def completed(receipt_number: str = "QK7R1XY2") -> GatewayStatus:
    return GatewayStatus(
        state="completed",
        detail="The service request is processed successfully.",
        receipt_number=receipt_number,
    )


def failed(detail: str = "Request cancelled by user") -> GatewayStatus:
    return GatewayStatus(state="failed", detail=detail)


class FakeGateway:
    """Scripted payment provider.

    ``query_status`` answers, in order of precedence, from ``by_reference``,
    then from the ``script`` queue, then with ``default``. Script entries that
    are exceptions are raised instead of returned.
    """

    def __init__(self, script=None, *, default: GatewayStatus = PENDING, initiate_error: Exception | None = None):
        self.script = list(script or [])
        self.default = default
        self.initiate_error = initiate_error
        self.by_reference: dict[str, GatewayStatus] = {}
        self.initiated: list[tuple[str, Decimal, str]] = []
        self.queries: list[str] = []
        self._counter = itertools.count(1)

    async def initiate(self, amount: Decimal, payer_phone: str) -> str:
        if self.initiate_error is not None:
            raise self.initiate_error
        reference = f"ws_CO_{next(self._counter):08d}"
        self.initiated.append((reference, amount, payer_phone))
        return reference

    async def query_status(self, external_reference: str) -> GatewayStatus:
        self.queries.append(external_reference)
        if external_reference in self.by_reference:
            return self.by_reference[external_reference]
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.default

    @property
    def last_reference(self) -> str:
        return self.initiated[-1][0]
