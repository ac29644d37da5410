import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from storefront.common.custom_exceptions import DuplicateOrderNumber, InvalidStateForDeletion, ValidationFailed
from storefront.common.utils import now
from storefront.orders.constants import DELETABLE_STATUSES, REQUIRED_ADDRESS_FIELDS, logger
from storefront.orders.utils import money
from storefront.schema.full_schema import Orders, OrderStatus, PaymentStatus


def missing_address_fields(address: Optional[Dict[str, Any]]) -> List[str]:
    address = address or {}
    return [f for f in REQUIRED_ADDRESS_FIELDS if not str(address.get(f) or "").strip()]


def _as_uuid(value: Union[str, uuid.UUID]) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class OrderStore:
    """
    Only code that touches `Orders` rows. Every state change is one conditional
    UPDATE/DELETE whose WHERE clause encodes the expected current state, the
    returned bool says whether this caller won.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def create(self, draft: Dict[str, Any]) -> Orders:
        missing = missing_address_fields(draft.get("shipping_address"))
        if missing:
            raise ValidationFailed("Shipping address is incomplete", details={"missing": missing})
        if draft.get("billing_address") is not None:
            missing = missing_address_fields(draft["billing_address"])
            if missing:
                raise ValidationFailed("Billing address is incomplete", details={"missing": missing})

        order = Orders(**draft)
        async with self.session_maker() as session:
            session.add(order)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                # public_id is uuid7, order_number is the only unique column a caller can collide on
                logger.warning("order.create.integrity_error", extra={"order_number": draft.get("order_number")})
                raise DuplicateOrderNumber(draft.get("order_number")) from exc
            await session.refresh(order)
        return order

    async def _first(self, stmt) -> Optional[Orders]:
        async with self.session_maker() as session:
            res = await session.execute(stmt)
            return res.scalars().first()

    async def find_by_pk(self, pk: int) -> Optional[Orders]:
        return await self._first(select(Orders).where(Orders.id == pk))

    async def find_by_id(self, order_id: Union[str, uuid.UUID]) -> Optional[Orders]:
        public_id = _as_uuid(order_id)
        if public_id is None:
            return None
        return await self._first(select(Orders).where(Orders.public_id == public_id))

    async def find_by_order_number(self, order_number: str) -> Optional[Orders]:
        if not order_number:
            return None
        return await self._first(select(Orders).where(Orders.order_number == order_number.upper()))

    async def find_by_gateway_reference(self, reference: str) -> Optional[Orders]:
        if not reference:
            return None
        return await self._first(select(Orders).where(Orders.gateway_reference == reference))

    async def find_recent_duplicate(self, user_id: str, total: Decimal, first_product_id: str,
                                    since: datetime) -> Optional[Orders]:
        stmt = (
            select(Orders)
            .where(Orders.user_id == user_id,
                   Orders.status == OrderStatus.PENDING.value,
                   Orders.payment_status == PaymentStatus.PENDING.value,
                   Orders.created_at >= since)
            .order_by(Orders.created_at.desc())
        )
        async with self.session_maker() as session:
            res = await session.execute(stmt)
            candidates = res.scalars().all()

        # json columns are not portably queryable, first-product match happens here
        for order in candidates:
            first = (order.items or [{}])[0]
            if money(order.total) == money(total) and str(first.get("product_id")) == str(first_product_id):
                return order
        return None

    async def list_orders(self, user_id: Optional[str] = None, status: Optional[str] = None,
                          payment_status: Optional[str] = None, page: int = 1,
                          limit: int = 10) -> Tuple[List[Orders], int]:
        conds = []
        if user_id is not None:
            conds.append(Orders.user_id == user_id)
        if status:
            conds.append(Orders.status == status)
        if payment_status:
            conds.append(Orders.payment_status == payment_status)

        stmt = (
            select(Orders).where(*conds)
            .order_by(Orders.created_at.desc(), Orders.id.desc())
            .offset((page - 1) * limit).limit(limit)
        )
        count_stmt = select(func.count()).select_from(Orders).where(*conds)
        async with self.session_maker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            total = (await session.execute(count_stmt)).scalar_one()
        return list(rows), int(total)

    async def _execute_guarded(self, stmt) -> bool:
        async with self.session_maker() as session:
            res = await session.execute(stmt)
            await session.commit()
            return res.rowcount == 1

    async def update_payment_and_status(self, order_id: int, payment_status: str, order_status: str,
                                        gateway_transaction_id: Optional[str] = None,
                                        estimated_delivery: Optional[datetime] = None) -> bool:
        """Settle a pending payment on a pending order. False means another caller got there first."""
        values: Dict[str, Any] = {
            "payment_status": payment_status,
            "status": order_status,
            "updated_at": now(),
        }
        if gateway_transaction_id is not None:
            values["gateway_transaction_id"] = gateway_transaction_id
        if estimated_delivery is not None:
            values["estimated_delivery"] = estimated_delivery

        stmt = (
            update(Orders)
            .where(Orders.id == order_id,
                   Orders.payment_status == PaymentStatus.PENDING.value,
                   Orders.status == OrderStatus.PENDING.value)
            .values(**values)
        )
        return await self._execute_guarded(stmt)

    async def set_gateway_reference(self, order_id: int, reference: str) -> bool:
        stmt = (
            update(Orders)
            .where(Orders.id == order_id,
                   Orders.gateway_reference.is_(None),
                   Orders.status == OrderStatus.PENDING.value)
            .values(gateway_reference=reference, updated_at=now())
        )
        try:
            return await self._execute_guarded(stmt)
        except IntegrityError:
            # reference already bound to another order
            logger.warning("order.gateway_reference.conflict", extra={"order_pk": order_id, "reference": reference})
            return False

    async def update_fulfilment(self, order_id: int, expected_status: str, new_status: str,
                                **fields: Any) -> bool:
        allowed = {"tracking_number", "admin_notes", "estimated_delivery", "delivered_at"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"unsupported fulfilment fields: {sorted(unknown)}")

        stmt = (
            update(Orders)
            .where(Orders.id == order_id, Orders.status == expected_status)
            .values(status=new_status, updated_at=now(), **fields)
        )
        return await self._execute_guarded(stmt)

    async def delete(self, order_id: int) -> bool:
        stmt = (
            delete(Orders)
            .where(Orders.id == order_id,
                   Orders.status.in_(DELETABLE_STATUSES),
                   Orders.payment_status != PaymentStatus.COMPLETED.value)
        )
        if await self._execute_guarded(stmt):
            return True

        current = await self.find_by_pk(order_id)
        if current is None:
            return False
        raise InvalidStateForDeletion(current.status)
