import hashlib
import hmac
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

MINOR_UNITS_PER_UNIT = 100  # kobo per naira, cents per dollar

_CENT = Decimal("0.01")


def to_minor_units(amount: Union[Decimal, int, str]) -> int:
    """Base unit (naira) -> gateway minor unit (kobo), rounded half up."""
    value = Decimal(str(amount)) * MINOR_UNITS_PER_UNIT
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor_units: int) -> Decimal:
    """Gateway minor unit (kobo) -> base unit (naira)."""
    return (Decimal(int(amount_minor_units)) / MINOR_UNITS_PER_UNIT).quantize(_CENT)


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA512 hex digest of the exact request bytes, as the gateway computes it."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def secure_compare(a: str, b: str) -> bool:
    # constant-time compare
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
