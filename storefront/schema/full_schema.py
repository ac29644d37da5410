import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, DateTime, Index, Numeric, Text, Uuid
from sqlmodel import Column, SQLModel, Field, String
from uuid6 import uuid7
from storefront.common.utils import now


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    GATEWAY = "gateway"
    CASH_ON_DELIVERY = "cash_on_delivery"


class WebhookOutcome(str, enum.Enum):
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


# User (external identity) --> Orders (1:many)
# items/addresses are snapshots taken at checkout, product and user rows live in other services
class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    order_number: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    user_id: str = Field(sa_column=Column(String(64), index=True, nullable=False))

    items: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    shipping_address: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    billing_address: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    payment_method: str = Field(default=PaymentMethod.GATEWAY.value, sa_column=Column(String(32), nullable=False))
    payment_status: str = Field(default=PaymentStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    gateway_reference: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, unique=True))
    gateway_transaction_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    payment_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    currency: str = Field(default="NGN", sa_column=Column(String(8), nullable=False))

    status: str = Field(default=OrderStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    subtotal: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))  # base unit (naira)
    shipping_cost: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    tax: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    total: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))

    notes: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    tracking_number: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    admin_notes: Optional[str] = Field(default=None, sa_column=Column(String(1000), nullable=True))
    estimated_delivery: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    delivered_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )


class PaymentWebhookEvent(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(default="paystack", sa_column=Column(String(64), nullable=False, index=True))
    event: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    reference: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    outcome: str = Field(default=WebhookOutcome.PROCESSED.value, sa_column=Column(String(16), nullable=False, index=True))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
