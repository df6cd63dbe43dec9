from __future__ import annotations

import asyncio
import base64
import logging
import time
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import httpx

from app.retailcore.core.logging import log_json
from app.retailcore.services.payment_gateway import (
    GatewayError,
    GatewayInitiationError,
    GatewayStatus,
    normalize_phone,
)

logger = logging.getLogger("retailcore.mpesa")

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
LIVE_BASE_URL = "https://api.safaricom.co.ke"

AUTH_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

# Daraja answers STK queries with this error while the customer has not acted yet.
STILL_PROCESSING_ERROR = "500.001.1001"
TOKEN_EXPIRY_MARGIN_SEC = 60


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d%H%M%S")


def _whole_units(amount: Decimal) -> int:
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        return str(body.get("errorMessage") or body.get("ResponseDescription") or body)
    return str(body)


class MpesaGateway:
    """Lipa na M-Pesa Online (STK push) client for the Daraja API."""

    def __init__(
        self,
        *,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        environment: str = "sandbox",
        transaction_type: str = "PayBill",
        account_reference: str = "RetailCore",
        timeout: float = 25.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.account_reference = account_reference
        self.transaction_type = (
            "CustomerBuyGoodsOnline" if transaction_type == "BuyGoods" else "CustomerPayBillOnline"
        )
        base_url = LIVE_BASE_URL if environment == "live" else SANDBOX_BASE_URL
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "MpesaGateway":
        return cls(
            consumer_key=settings.MPESA_CONSUMER_KEY,
            consumer_secret=settings.MPESA_CONSUMER_SECRET,
            shortcode=settings.MPESA_SHORTCODE,
            passkey=settings.MPESA_PASSKEY,
            callback_url=settings.MPESA_CALLBACK_URL,
            environment=settings.MPESA_ENVIRONMENT,
            transaction_type=settings.MPESA_TRANSACTION_TYPE,
            account_reference=settings.MPESA_ACCOUNT_REFERENCE,
            timeout=settings.PAYMENT_QUERY_TIMEOUT_SEC,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}".encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    async def _access_token(self) -> str:
        async with self._token_lock:
            if self._token and self._token_expires_at > time.monotonic():
                return self._token
            if not (self.consumer_key and self.consumer_secret and self.shortcode and self.passkey):
                raise GatewayError("M-Pesa settings are not fully configured")
            try:
                response = await self._client.get(
                    AUTH_PATH,
                    params={"grant_type": "client_credentials"},
                    auth=(self.consumer_key, self.consumer_secret),
                )
            except httpx.HTTPError as exc:
                raise GatewayError(f"Could not reach M-Pesa auth endpoint: {exc}") from exc
            if response.status_code != 200:
                raise GatewayError(f"M-Pesa auth failed: {_error_text(response)}")
            body = response.json()
            self._token = body["access_token"]
            expires_in = int(body.get("expires_in", 3599))
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SEC, 0)
            return self._token

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        token = await self._access_token()
        return await self._client.post(path, json=payload, headers={"Authorization": f"Bearer {token}"})

    async def initiate(self, amount: Decimal, payer_phone: str) -> str:
        phone = normalize_phone(payer_phone)
        timestamp = _timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": self.transaction_type,
            "Amount": _whole_units(amount),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": self.account_reference,
            "TransactionDesc": "Payment for goods",
        }
        try:
            response = await self._post(STK_PUSH_PATH, payload)
        except GatewayError as exc:
            raise GatewayInitiationError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise GatewayInitiationError(f"Could not connect to the payment service: {exc}") from exc

        if response.status_code >= 400:
            raise GatewayInitiationError(f"M-Pesa error: {_error_text(response)}")
        body = response.json()
        if str(body.get("ResponseCode")) != "0" or not body.get("CheckoutRequestID"):
            raise GatewayInitiationError(body.get("errorMessage") or "Failed to initiate M-Pesa STK push")

        log_json(
            logger,
            {
                "event": "mpesa_stk_push_accepted",
                "checkout_request_id": body["CheckoutRequestID"],
                "merchant_request_id": body.get("MerchantRequestID"),
                "amount": payload["Amount"],
            },
        )
        return body["CheckoutRequestID"]

    async def query_status(self, external_reference: str) -> GatewayStatus:
        timestamp = _timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": external_reference,
        }
        try:
            response = await self._post(STK_QUERY_PATH, payload)
        except httpx.HTTPError as exc:
            raise GatewayError(f"M-Pesa query failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayError(f"M-Pesa query returned a non-JSON body ({response.status_code})") from exc

        if body.get("errorCode") == STILL_PROCESSING_ERROR:
            return GatewayStatus(state="pending", detail=body.get("errorMessage"))
        if response.status_code >= 400 or "ResultCode" not in body:
            raise GatewayError(f"M-Pesa query error: {_error_text(response)}")

        result_code = str(body.get("ResultCode"))
        if result_code == "0":
            return GatewayStatus(state="completed", detail=body.get("ResultDesc"))
        return GatewayStatus(state="failed", detail=body.get("ResultDesc"))


def parse_stk_callback(body: dict | None) -> tuple[str, GatewayStatus] | None:
    """Extract ``(checkout_request_id, status)`` from a Daraja STK callback body."""
    callback = ((body or {}).get("Body") or {}).get("stkCallback")
    if not isinstance(callback, dict) or not callback.get("CheckoutRequestID"):
        return None
    reference = callback["CheckoutRequestID"]
    result_desc = callback.get("ResultDesc")
    if str(callback.get("ResultCode")) != "0":
        return reference, GatewayStatus(state="failed", detail=result_desc)

    receipt = None
    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    for item in items:
        if item.get("Name") == "MpesaReceiptNumber":
            receipt = item.get("Value")
    return reference, GatewayStatus(state="completed", detail=result_desc, receipt_number=receipt)
