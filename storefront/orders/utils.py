import secrets
import string
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from storefront.common.custom_exceptions import EmptyCart, InvalidState, ValidationFailed
from storefront.common.utils import as_utc
from storefront.schema.full_schema import OrderStatus, Orders, PaymentMethod, PaymentStatus

_CENT = Decimal("0.01")
_BASE36 = string.digits + string.ascii_uppercase

# the only place order lifecycle moves are decided
ORDER_TRANSITIONS: Dict[str, frozenset] = {
    OrderStatus.PENDING.value: frozenset({OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value}),
    OrderStatus.CONFIRMED.value: frozenset({OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value}),
    OrderStatus.PROCESSING.value: frozenset({OrderStatus.SHIPPED.value}),
    OrderStatus.SHIPPED.value: frozenset({OrderStatus.DELIVERED.value}),
    OrderStatus.DELIVERED.value: frozenset(),
    OrderStatus.CANCELLED.value: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[str, frozenset] = {
    PaymentStatus.PENDING.value: frozenset({PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value}),
    PaymentStatus.COMPLETED.value: frozenset(),
    PaymentStatus.FAILED.value: frozenset(),
    PaymentStatus.REFUNDED.value: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidState(f"Cannot move order from {current} to {target}", current_status=current)


def ensure_payment_transition(current: str, target: str) -> None:
    if target not in PAYMENT_TRANSITIONS.get(current, frozenset()):
        raise InvalidState(f"Cannot move payment from {current} to {target}", current_status=current)


def money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal = Decimal("0.075")
    flat_shipping: Decimal = Decimal("2000")
    free_shipping_threshold: Optional[Decimal] = Decimal("50000")

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        if self.free_shipping_threshold is not None and subtotal > self.free_shipping_threshold:
            return money(0)
        return money(self.flat_shipping)

    def tax_for(self, subtotal: Decimal) -> Decimal:
        return money(subtotal * Decimal(str(self.tax_rate)))


def normalize_cart_items(cart_snapshot: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Validate the cart snapshot and return JSON-safe item snapshots.
    Prices are base-unit strings so the JSON column keeps exact values.
    """
    if not cart_snapshot:
        raise EmptyCart()

    items = []
    for idx, raw in enumerate(cart_snapshot):
        product_id = raw.get("product_id")
        if product_id in (None, ""):
            raise ValidationFailed("Item is missing product", details={"item": idx})

        try:
            quantity = int(raw.get("quantity"))
            price = money(raw.get("price"))
        except (TypeError, ValueError, InvalidOperation):
            raise ValidationFailed("Item has invalid price or quantity", details={"item": idx})

        if quantity < 1:
            raise ValidationFailed("Item quantity must be at least 1", details={"item": idx})
        if price < 0:
            raise ValidationFailed("Item price cannot be negative", details={"item": idx})

        items.append({
            "product_id": str(product_id),
            "name": raw.get("name"),
            "designer": raw.get("designer"),
            "price": str(price),
            "quantity": quantity,
            "image": raw.get("image"),
        })
    return items


def compute_order_totals(items: List[Dict[str, Any]], pricing: PricingPolicy) -> Dict[str, Decimal]:
    subtotal = money(sum((Decimal(it["price"]) * int(it["quantity"]) for it in items), Decimal("0")))
    shipping = pricing.shipping_for(subtotal)
    tax = pricing.tax_for(subtotal)
    return {
        "subtotal": subtotal,
        "shipping_cost": shipping,
        "tax": tax,
        "total": money(subtotal + shipping + tax),
    }


def _base36(value: int) -> str:
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = _BASE36[rem] + out
    return out or "0"


def generate_order_number(prefix: str = "TF") -> str:
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{prefix}-{stamp}-{suffix}".upper()


def validate_payment_method(payment_method: str) -> str:
    allowed = {m.value for m in PaymentMethod}
    if payment_method not in allowed:
        raise ValidationFailed("Unsupported payment method", details={"allowed": sorted(allowed)})
    return payment_method


def _dt(value):
    value = as_utc(value)
    return value.isoformat() if value else None


def serialize_order(order: Orders) -> Dict[str, Any]:
    return {
        "id": str(order.public_id),
        "order_number": order.order_number,
        "user_id": order.user_id,
        "items": order.items,
        "shipping_address": order.shipping_address,
        "billing_address": order.billing_address,
        "payment": {
            "method": order.payment_method,
            "status": order.payment_status,
            "gateway_reference": order.gateway_reference,
            "gateway_transaction_id": order.gateway_transaction_id,
            "amount": str(money(order.payment_amount)),
            "currency": order.currency,
        },
        "status": order.status,
        "subtotal": str(money(order.subtotal)),
        "shipping_cost": str(money(order.shipping_cost)),
        "tax": str(money(order.tax)),
        "total": str(money(order.total)),
        "notes": order.notes,
        "tracking_number": order.tracking_number,
        "admin_notes": order.admin_notes,
        "estimated_delivery": _dt(order.estimated_delivery),
        "delivered_at": _dt(order.delivered_at),
        "created_at": _dt(order.created_at),
        "updated_at": _dt(order.updated_at),
    }
