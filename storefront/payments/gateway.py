import asyncio
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import quote
import httpx
from pydantic import BaseModel
from storefront.common.circuit_breaker import CircuitBreaker, CircuitOpenError
from storefront.common.custom_exceptions import GatewayUnavailable
from storefront.common.retries import retry_async
from storefront.payments.constants import (ABANDONED_GATEWAY_STATUSES, FAILED_GATEWAY_STATUSES, GATEWAY_ABANDONED,
                                           GATEWAY_FAILED, GATEWAY_PENDING, GATEWAY_SUCCESS, logger)
from storefront.payments.utils import compute_webhook_signature, from_minor_units


class TransactionInit(BaseModel):
    authorization_url: str
    access_code: str
    reference: str


class TransactionVerification(BaseModel):
    status: str   # success | failed | abandoned | pending
    amount_minor_units: int
    currency: str
    gateway_transaction_id: Optional[str] = None
    reference: str
    gateway_status: Optional[str] = None   # raw provider status, for logs only

    @property
    def succeeded(self) -> bool:
        return self.status == GATEWAY_SUCCESS

    @property
    def in_progress(self) -> bool:
        return self.status == GATEWAY_PENDING

    @property
    def amount(self) -> Decimal:
        return from_minor_units(self.amount_minor_units)


def normalize_gateway_status(raw: Optional[str]) -> str:
    value = (raw or "").lower()
    if value == GATEWAY_SUCCESS:
        return GATEWAY_SUCCESS
    if value in FAILED_GATEWAY_STATUSES:
        return GATEWAY_FAILED
    if value in ABANDONED_GATEWAY_STATUSES:
        return GATEWAY_ABANDONED
    # ongoing, processing, queued, send_otp, missing...
    return GATEWAY_PENDING


class PaystackClient:
    """
    Thin async client over the Paystack transaction API. No business rules live here.

    Every failure to get a usable answer (non-2xx, transport error, timeout, open circuit,
    `"status": false` envelope) surfaces as GatewayUnavailable so callers treat it as
    retryable rather than as a payment outcome.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        circuit: Optional[CircuitBreaker] = None,
        verify_retries: int = 2,
        retry_base_delay: float = 0.2,
    ):
        self.http_client = http_client
        self._secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.circuit = circuit or CircuitBreaker(name="paystack")
        self.verify_retries = max(0, int(verify_retries))
        self.retry_base_delay = retry_base_delay

    compute_webhook_signature = staticmethod(compute_webhook_signature)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
        }

    async def _send(self, method: str, path: str, payload: Optional[dict]) -> Dict[str, Any]:
        request = self.http_client.request(method, f"{self.base_url}{path}", json=payload,
                                           headers=self._headers(), timeout=self.timeout)
        # httpx timeouts are per phase, wait_for bounds the whole exchange
        resp = await asyncio.wait_for(request, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    async def _call(self, method: str, path: str, *, payload: Optional[dict] = None,
                    retries: int = 0) -> Dict[str, Any]:
        if not self._secret_key:
            raise GatewayUnavailable("gateway secret key not configured")

        try:
            await self.circuit.before_call()
        except CircuitOpenError as exc:
            logger.warning("gateway.circuit_open", extra={"path": path})
            raise GatewayUnavailable("circuit_open") from exc

        send = self._send
        if retries:
            send = retry_async(attempts=retries + 1, base_delay=self.retry_base_delay)(self._send)

        try:
            body = await send(method, path, payload)
        except httpx.HTTPStatusError as exc:
            await self.circuit.after_call(False)
            logger.warning("gateway.http_error", extra={"path": path, "http_status": exc.response.status_code})
            raise GatewayUnavailable(f"http_{exc.response.status_code}") from exc
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            await self.circuit.after_call(False)
            logger.warning("gateway.transport_error", extra={"path": path, "error": type(exc).__name__})
            raise GatewayUnavailable(type(exc).__name__) from exc
        except ValueError as exc:
            await self.circuit.after_call(False)
            logger.warning("gateway.invalid_body", extra={"path": path})
            raise GatewayUnavailable("invalid_json") from exc

        await self.circuit.after_call(True)

        if not isinstance(body, dict) or not body.get("status") or not isinstance(body.get("data"), dict):
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning("gateway.unsuccessful_response", extra={"path": path, "gateway_message": message})
            raise GatewayUnavailable("unsuccessful_response")
        return body["data"]

    async def initialize_transaction(
        self,
        reference: str,
        amount_minor_units: int,
        email: str,
        currency: str,
        callback_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransactionInit:
        payload: Dict[str, Any] = {
            "reference": reference,
            "amount": int(amount_minor_units),
            "email": email,
            "currency": currency,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url

        # never retried automatically, a second initialize for the same reference is rejected upstream
        data = await self._call("POST", "/transaction/initialize", payload=payload)
        try:
            return TransactionInit(
                authorization_url=data["authorization_url"],
                access_code=data["access_code"],
                reference=data.get("reference") or reference,
            )
        except KeyError as exc:
            raise GatewayUnavailable("incomplete_initialize_response") from exc

    async def verify_transaction(self, reference: str) -> TransactionVerification:
        path = f"/transaction/verify/{quote(reference, safe='')}"
        data = await self._call("GET", path, retries=self.verify_retries)

        try:
            amount_minor_units = int(data["amount"])
        except (KeyError, TypeError, ValueError) as exc:
            raise GatewayUnavailable("incomplete_verify_response") from exc

        txn_id = data.get("id")
        return TransactionVerification(
            status=normalize_gateway_status(data.get("status")),
            amount_minor_units=amount_minor_units,
            currency=data.get("currency") or "",
            gateway_transaction_id=str(txn_id) if txn_id is not None else None,
            reference=data.get("reference") or reference,
            gateway_status=data.get("status"),
        )
