import asyncio
import hashlib
import hmac
import json
from typing import Optional
import httpx
from storefront.auth.models import Principal
from storefront.auth.utils import create_access_token
from storefront.payments.gateway import TransactionInit, TransactionVerification, normalize_gateway_status

url_prefix = "/api/v1"

SECRET_KEY = "sk_test_secret"
JWT_SECRET = "test-jwt-secret"

USER = Principal(user_id="user-1")
OTHER_USER = Principal(user_id="user-2")
ADMIN = Principal(user_id="admin-1", roles=("admin",), is_admin=True)


def make_address(**overrides):
    address = {
        "first_name": "Ada",
        "last_name": "Obi",
        "email": "ada@example.com",
        "phone": "+2348012345678",
        "address": "12 Marina Road",
        "city": "Lagos",
        "state": "Lagos",
        "country": "Nigeria",
        "postal_code": "100001",
    }
    address.update(overrides)
    return address


def make_cart(*prices, product_prefix="prod"):
    return [
        {"product_id": f"{product_prefix}-{i}", "name": f"Item {i}", "designer": "Studio",
         "price": str(p), "quantity": 1, "image": None}
        for i, p in enumerate(prices, start=1)
    ]


def sign(body: bytes, secret: str = SECRET_KEY) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def bearer(user_id: str = "user-1", roles=()):
    token = create_access_token(user_id, roles, secret=JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


class FakeGateway:
    """In-process stand-in for PaystackClient."""

    def __init__(self):
        self.status = "success"
        self.amount_minor_units: Optional[int] = None
        self.currency = "NGN"
        self.reference_override: Optional[str] = None
        self.init_error: Optional[Exception] = None
        self.verify_error: Optional[Exception] = None
        self.delay = 0.0
        # awaited mid-call, lets a test change the order while the gateway is "thinking"
        self.during_verify = None
        self.init_calls = []
        self.verify_calls = []

    async def initialize_transaction(self, reference, amount_minor_units, email, currency,
                                     callback_url=None, metadata=None):
        self.init_calls.append({"reference": reference, "amount_minor_units": amount_minor_units,
                                "email": email, "currency": currency, "callback_url": callback_url,
                                "metadata": metadata})
        if self.init_error:
            raise self.init_error
        return TransactionInit(authorization_url=f"https://checkout.paystack.test/{reference}",
                               access_code="acc_test", reference=reference)

    async def verify_transaction(self, reference):
        self.verify_calls.append(reference)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.during_verify is not None:
            await self.during_verify()
        if self.verify_error:
            raise self.verify_error
        return TransactionVerification(
            status=normalize_gateway_status(self.status),
            gateway_status=self.status,
            amount_minor_units=self.amount_minor_units or 0,
            currency=self.currency,
            gateway_transaction_id="4099260516",
            reference=self.reference_override or reference,
        )


class PaystackStub:
    """httpx.MockTransport handler mimicking the two Paystack transaction endpoints."""

    def __init__(self):
        self.verify_status = "success"
        self.amount: Optional[int] = None
        self.fail_with: Optional[int] = None
        self.requests = []
        self.initialized = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"status": False, "message": "upstream error"})

        if request.url.path == "/transaction/initialize":
            body = json.loads(request.content)
            self.initialized[body["reference"]] = body
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": f"https://checkout.paystack.com/{body['reference']}",
                    "access_code": "acc_live_like",
                    "reference": body["reference"],
                },
            })

        if request.url.path.startswith("/transaction/verify/"):
            reference = request.url.path.rsplit("/", 1)[1]
            amount = self.amount
            if amount is None:
                amount = self.initialized.get(reference, {}).get("amount", 0)
            return httpx.Response(200, json={
                "status": True,
                "message": "Verification successful",
                "data": {"id": 4099260516, "status": self.verify_status, "reference": reference,
                         "amount": amount, "currency": "NGN"},
            })

        return httpx.Response(404, json={"status": False, "message": "not found"})
