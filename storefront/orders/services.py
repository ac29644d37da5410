from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple
from storefront.auth.models import Principal
from storefront.common.custom_exceptions import (AlreadyInitialized, AmountMismatch, DuplicateOrderNumber,
                                                 Forbidden, InvalidState, NotFound, PaymentFailed, PaymentPending,
                                                 ValidationFailed)
from storefront.common.utils import now
from storefront.config.settings import Settings, config_settings
from storefront.orders.constants import (AMOUNT_TOLERANCE, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE,
                                         ORDER_NUMBER_ATTEMPTS, logger)
from storefront.orders.repository import OrderStore
from storefront.orders.utils import (PricingPolicy, compute_order_totals, ensure_payment_transition,
                                     ensure_transition, generate_order_number, money, normalize_cart_items,
                                     validate_payment_method)
from storefront.payments.gateway import PaystackClient, TransactionInit
from storefront.payments.utils import to_minor_units
from storefront.schema.full_schema import OrderStatus, Orders, PaymentMethod, PaymentStatus

VERIFY_SOURCES = ("user", "admin", "webhook")


def pricing_from_settings(settings: Settings) -> PricingPolicy:
    return PricingPolicy(
        tax_rate=settings.TAX_RATE,
        flat_shipping=settings.SHIPPING_FLAT,
        free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
    )


def clamp_page(page: int, limit: int) -> Tuple[int, int]:
    return max(1, int(page or 1)), min(MAX_PAGE_SIZE, max(1, int(limit or DEFAULT_PAGE_SIZE)))


class OrderService:
    """
    Order lifecycle rules. Reads go through the store freely, every write goes
    through one of its conditional entry points so concurrent callers (webhook
    racing a user poll, two admins) resolve to a single winner.
    """

    def __init__(self, store: OrderStore, gateway: PaystackClient,
                 pricing: Optional[PricingPolicy] = None, settings: Settings = config_settings):
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.pricing = pricing or pricing_from_settings(settings)

    async def create_order(self, user_id: str, cart_snapshot: List[Dict[str, Any]],
                           shipping_address: Dict[str, Any], payment_method: str = PaymentMethod.GATEWAY.value,
                           billing_address: Optional[Dict[str, Any]] = None,
                           notes: Optional[str] = None) -> Orders:

        items = normalize_cart_items(cart_snapshot)
        payment_method = validate_payment_method(payment_method)
        totals = compute_order_totals(items, self.pricing)

        window = int(self.settings.DUPLICATE_ORDER_WINDOW_SECONDS or 0)
        if window > 0:
            since = now() - timedelta(seconds=window)
            existing = await self.store.find_recent_duplicate(user_id, totals["total"], items[0]["product_id"], since)
            if existing is not None:
                logger.info("order.create.duplicate_submission",
                            extra={"user_id": user_id, "order_number": existing.order_number})
                return existing

        draft = {
            "user_id": user_id,
            "items": items,
            "shipping_address": dict(shipping_address or {}),
            "billing_address": dict(billing_address or shipping_address or {}),
            "payment_method": payment_method,
            "payment_status": PaymentStatus.PENDING.value,
            "payment_amount": totals["total"],
            "currency": self.settings.CURRENCY,
            "status": OrderStatus.PENDING.value,
            "notes": notes,
            **totals,
        }

        last_exc: Optional[DuplicateOrderNumber] = None
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            draft["order_number"] = generate_order_number(self.settings.ORDER_NUMBER_PREFIX)
            try:
                order = await self.store.create(draft)
            except DuplicateOrderNumber as exc:
                last_exc = exc
                continue

            logger.info("order.created", extra={"order_number": order.order_number, "user_id": user_id,
                                                "total": str(order.total), "payment_method": payment_method})
            return order

        logger.error("order.create.number_exhausted", extra={"user_id": user_id})
        raise last_exc

    async def initialize_payment(self, order_id: str, requester_user_id: str, email: str,
                                 callback_url: Optional[str] = None) -> TransactionInit:
        order = await self.store.find_by_id(order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.user_id != requester_user_id:
            raise Forbidden("Not allowed to pay for this order")
        if order.status != OrderStatus.PENDING.value or order.payment_status != PaymentStatus.PENDING.value:
            raise InvalidState(f"Order is {order.status}, payment cannot be initialized", current_status=order.status)
        if order.payment_method != PaymentMethod.GATEWAY.value:
            raise InvalidState("Order is not payable online", current_status=order.status)
        if order.gateway_reference:
            raise AlreadyInitialized("Payment already initialized for this order", current_status=order.status)

        reference = order.order_number
        callback_url = callback_url or f"{self.settings.PUBLIC_BASE_URL.rstrip('/')}/checkout/success?order={order.public_id}"

        # GatewayUnavailable propagates with the order untouched, retry is safe
        init = await self.gateway.initialize_transaction(
            reference=reference,
            amount_minor_units=to_minor_units(order.total),
            email=email,
            currency=order.currency,
            callback_url=callback_url,
            metadata={"order_id": str(order.public_id), "order_number": order.order_number,
                      "user_id": order.user_id},
        )

        bound = await self.store.set_gateway_reference(order.id, reference)
        if not bound:
            current = await self.store.find_by_pk(order.id)
            if current is None or current.gateway_reference != reference:
                raise AlreadyInitialized("Payment already initialized for this order",
                                         current_status=current.status if current else None)

        logger.info("payment.initialized", extra={"order_number": order.order_number,
                                                  "amount_minor_units": to_minor_units(order.total)})
        return init

    async def _lookup_for_verify(self, reference: str, source: str) -> Optional[Orders]:
        if source == "webhook":
            return await self.store.find_by_order_number(reference)
        order = await self.store.find_by_gateway_reference(reference)
        if order is None:
            order = await self.store.find_by_order_number(reference)
        return order

    async def _confirmed_elsewhere(self, order: Orders) -> Optional[Orders]:
        current = await self.store.find_by_pk(order.id)
        if current is not None and current.payment_status == PaymentStatus.COMPLETED.value:
            logger.info("payment.verify.lost_race", extra={"order_number": order.order_number})
            return current
        return None

    async def _settle_failed(self, order: Orders, reason: str) -> Optional[Orders]:
        """Cancel the order. Returns the order instead when a concurrent caller already confirmed it."""
        ensure_transition(order.status, OrderStatus.CANCELLED.value)
        ensure_payment_transition(order.payment_status, PaymentStatus.FAILED.value)
        won = await self.store.update_payment_and_status(order.id, PaymentStatus.FAILED.value,
                                                         OrderStatus.CANCELLED.value)
        logger.info("payment.verify.failed", extra={"order_number": order.order_number, "reason": reason,
                                                   "applied": won})
        if won:
            return None
        return await self._confirmed_elsewhere(order)

    async def _after_lost_race(self, order: Orders) -> Orders:
        current = await self._confirmed_elsewhere(order)
        if current is not None:
            return current
        raise PaymentFailed("settled_elsewhere", order_number=order.order_number)

    async def verify_payment(self, reference: str, source: str = "user",
                             requester: Optional[Principal] = None) -> Orders:
        if source not in VERIFY_SOURCES:
            raise ValueError(f"unknown verification source: {source}")
        reference = (reference or "").strip()
        if not reference:
            raise ValidationFailed("Payment reference is required")

        order = await self._lookup_for_verify(reference, source)
        if order is None or (requester is not None and order.user_id != requester.user_id
                             and not requester.is_admin):
            raise NotFound("Order not found")

        if order.payment_status == PaymentStatus.COMPLETED.value:
            logger.debug("payment.verify.already_completed", extra={"order_number": order.order_number,
                                                                   "source": source})
            return order
        if order.status != OrderStatus.PENDING.value or order.payment_status != PaymentStatus.PENDING.value:
            raise InvalidState(f"Order is {order.status}", current_status=order.status)

        gateway_ref = order.gateway_reference or order.order_number
        verification = await self.gateway.verify_transaction(gateway_ref)

        if verification.reference != gateway_ref:
            # nothing is settled on an answer about some other transaction
            logger.warning("payment.verify.reference_mismatch",
                           extra={"order_number": order.order_number, "gateway_reference": verification.reference})
            raise PaymentFailed("reference_mismatch", order_number=order.order_number)

        if verification.in_progress:
            logger.info("payment.verify.in_progress",
                        extra={"order_number": order.order_number, "gateway_status": verification.gateway_status,
                               "source": source})
            raise PaymentPending(verification.gateway_status, order_number=order.order_number)

        if not verification.succeeded:
            confirmed = await self._settle_failed(order, reason=f"gateway_{verification.status}")
            if confirmed is not None:
                return confirmed
            raise PaymentFailed(f"gateway_{verification.status}", order_number=order.order_number)

        expected = money(order.total)
        received = verification.amount
        if abs(received - expected) > AMOUNT_TOLERANCE:
            logger.warning("payment.verify.amount_mismatch",
                           extra={"order_number": order.order_number, "expected": str(expected),
                                  "received": str(received), "source": source})
            confirmed = await self._settle_failed(order, reason="amount_mismatch")
            if confirmed is not None:
                return confirmed
            raise AmountMismatch(expected, received, order_number=order.order_number)

        if verification.currency and verification.currency.upper() != order.currency.upper():
            logger.warning("payment.verify.currency_mismatch",
                           extra={"order_number": order.order_number, "expected": order.currency,
                                  "received": verification.currency})
            confirmed = await self._settle_failed(order, reason="currency_mismatch")
            if confirmed is not None:
                return confirmed
            raise PaymentFailed("currency_mismatch", order_number=order.order_number)

        ensure_transition(order.status, OrderStatus.CONFIRMED.value)
        ensure_payment_transition(order.payment_status, PaymentStatus.COMPLETED.value)
        won = await self.store.update_payment_and_status(
            order.id,
            PaymentStatus.COMPLETED.value,
            OrderStatus.CONFIRMED.value,
            gateway_transaction_id=verification.gateway_transaction_id,
            estimated_delivery=now() + timedelta(days=self.settings.DELIVERY_DAYS),
        )
        if not won:
            return await self._after_lost_race(order)

        logger.info("payment.verify.confirmed", extra={"order_number": order.order_number, "source": source,
                                                      "gateway_transaction_id": verification.gateway_transaction_id})
        return await self.store.find_by_pk(order.id)

    async def admin_manual_verify(self, order_id: str, admin: Principal) -> Orders:
        order = await self.store.find_by_id(order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.status != OrderStatus.PENDING.value or order.payment_status != PaymentStatus.PENDING.value:
            raise InvalidState(f"Order is {order.status}", current_status=order.status)

        ensure_transition(order.status, OrderStatus.CONFIRMED.value)
        won = await self.store.update_payment_and_status(
            order.id,
            PaymentStatus.COMPLETED.value,
            OrderStatus.CONFIRMED.value,
            estimated_delivery=now() + timedelta(days=self.settings.DELIVERY_DAYS),
        )
        if not won:
            current = await self.store.find_by_pk(order.id)
            raise InvalidState("Order payment already settled",
                               current_status=current.status if current else None)

        logger.warning("payment.admin_override", extra={"admin_id": admin.user_id,
                                                       "order_number": order.order_number})
        return await self.store.find_by_pk(order.id)

    async def get_order(self, order_id: str, requester: Principal) -> Orders:
        order = await self.store.find_by_id(order_id)
        # non-owners get the same answer as for a missing order
        if order is None or (order.user_id != requester.user_id and not requester.is_admin):
            raise NotFound("Order not found")
        return order

    async def list_orders(self, user_id: str, status: Optional[str] = None, page: int = 1,
                          limit: int = DEFAULT_PAGE_SIZE) -> Tuple[List[Orders], int]:
        page, limit = clamp_page(page, limit)
        return await self.store.list_orders(user_id=user_id, status=status, page=page, limit=limit)

    async def admin_list_orders(self, status: Optional[str] = None, payment_status: Optional[str] = None,
                                user_id: Optional[str] = None, page: int = 1,
                                limit: int = DEFAULT_PAGE_SIZE) -> Tuple[List[Orders], int]:
        page, limit = clamp_page(page, limit)
        return await self.store.list_orders(user_id=user_id, status=status, payment_status=payment_status,
                                            page=page, limit=limit)

    async def admin_update_order(self, order_id: str, admin: Principal, status: Optional[str] = None,
                                 tracking_number: Optional[str] = None,
                                 admin_notes: Optional[str] = None) -> Orders:
        order = await self.store.find_by_id(order_id)
        if order is None:
            raise NotFound("Order not found")

        fields: Dict[str, Any] = {}
        if tracking_number is not None:
            fields["tracking_number"] = tracking_number
        if admin_notes is not None:
            fields["admin_notes"] = admin_notes

        target = order.status
        if status and status != order.status:
            if status not in {s.value for s in OrderStatus}:
                raise ValidationFailed("Unknown order status", details={"status": status})
            ensure_transition(order.status, status)
            if (status == OrderStatus.CONFIRMED.value and order.payment_method == PaymentMethod.GATEWAY.value
                    and order.payment_status != PaymentStatus.COMPLETED.value):
                raise InvalidState("Gateway orders are confirmed through payment verification",
                                   current_status=order.status)
            if status == OrderStatus.SHIPPED.value:
                fields["estimated_delivery"] = now() + timedelta(days=self.settings.SHIPPED_DELIVERY_DAYS)
            elif status == OrderStatus.DELIVERED.value:
                fields["delivered_at"] = now()
            target = status

        if not fields and target == order.status:
            return order

        won = await self.store.update_fulfilment(order.id, order.status, target, **fields)
        if not won:
            current = await self.store.find_by_pk(order.id)
            if current is None:
                raise NotFound("Order not found")
            raise InvalidState("Order was modified concurrently", current_status=current.status)

        logger.info("order.admin_update", extra={"admin_id": admin.user_id, "order_number": order.order_number,
                                                 "from_status": order.status, "to_status": target})
        return await self.store.find_by_pk(order.id)

    async def delete_order(self, order_id: str, requester_user_id: str) -> None:
        order = await self.store.find_by_id(order_id)
        if order is None or order.user_id != requester_user_id:
            raise NotFound("Order not found")

        # InvalidStateForDeletion from the guarded delete names the current status
        deleted = await self.store.delete(order.id)
        if not deleted:
            raise NotFound("Order not found")
        logger.info("order.deleted", extra={"order_number": order.order_number, "user_id": requester_user_id})
