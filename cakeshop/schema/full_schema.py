import enum
import uuid
from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Float, ForeignKey, Index, Integer, Text, Uuid
from uuid6 import uuid7
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlmodel import Column, SQLModel, Field, String
from cakeshop.common.utils import now


class UserRoleName(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class Users(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    email: Optional[str] = Field(default=None,sa_column=Column(String(320), nullable=True,unique=True))
    name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    role: str = Field(default=UserRoleName.USER.value, sa_column=Column(String(16), nullable=False, default=UserRoleName.USER.value))
    # loyalty balance, always equal to sum(PointsHistory.amount) for the user
    sweet_points: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))
    deleted_at: Optional[datetime] = Field(default=None,
        sa_column=Column(DateTime(timezone=True)))


class PointsEntryType(str, enum.Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"


class PointsHistory(SQLModel, table=True):
    """Append-only loyalty ledger. Rows are never updated or deleted."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    amount: int = Field(sa_column=Column(Integer, nullable=False))   # signed delta
    entry_type: str = Field(sa_column=Column(String(16), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    related_order_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True))
    related_coupon_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("coupon.id", ondelete="SET NULL"), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

# ---------------------------------------------------------------------------------------------------------

class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    name: str = Field(sa_column=Column(String(255), nullable=False,unique=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    # list of image urls, first one is the cover
    images: Optional[List[str]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    # [{"weight_in_kg": 1.0, "label": "1 kg", "price": 1500}, ...]
    weight_options: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))
    deleted_at: Optional[datetime] = Field(default=None,
        sa_column=Column(DateTime(timezone=True)))

# ---------------------------------------------------------------------------------------------------------

class DeliveryType(str, enum.Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Cart(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False))
    delivery_type: str = Field(default=DeliveryType.DELIVERY.value, sa_column=Column(String(16), nullable=False, default=DeliveryType.DELIVERY.value))
    # promo descriptor copied by value: {code, discount, discount_type, max_discount, min_order_amount, coupon_id}
    promo_code: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))


class CartItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    cart_id: int = Field(sa_column=Column(ForeignKey("cart.id", ondelete="CASCADE"), index=True, nullable=False))
    # null for a custom (off-catalog) cake
    product_id: Optional[int] = Field(default=None, sa_column=Column(ForeignKey("product.id", ondelete="SET NULL"), nullable=True))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    # {"weight_in_kg", "label", "price"}
    selected_weight: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    customization: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

# ---------------------------------------------------------------------------------------------------------

class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    ESEWA = "esewa"
    COD = "cod"


class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    order_number: str = Field(sa_column=Column(String(32), unique=True, nullable=False, index=True))
    user_id: int = Field(sa_column=Column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True))

    contact_email: str = Field(sa_column=Column(String(320), nullable=False))
    shipping_address_json: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    # {"date": "YYYY-MM-DD", "time_slot": "09:00 AM - 12:00 PM"}
    delivery_schedule: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    special_requests: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    subscribe_newsletter: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))

    payment_method: str = Field(sa_column=Column(String(16), nullable=False))
    payment_status: str = Field(default=PaymentStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    order_status: str = Field(default=OrderStatus.PENDING.value, sa_column=Column(String(32), nullable=False, index=True))

    # frozen at creation, total = subtotal + shipping - discount
    subtotal: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    shipping: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    discount: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    total: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    promo_code: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    # correlation key echoed back by the gateway, set at payment initiation
    gateway_transaction_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, unique=True))
    # {"transaction_id", "reference_id", "amount", "paid_at"} once paid
    gateway_details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    notes: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    cancel_reason: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    delivered_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    refund_amount: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    refund_reason: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    refund_notes: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    refunded_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    refunded_by: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True))

    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(DateTime(timezone=True), nullable=False,default=now, onupdate=now))

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )


class OrderItem(SQLModel, table=True):
    """Snapshot of a cart line at order time, catalog changes never touch these rows."""
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("product.id", ondelete="SET NULL"), nullable=True))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    image: str = Field(default="", sa_column=Column(String(2048), nullable=False, default=""))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    weight_in_kg: float = Field(sa_column=Column(Float, nullable=False))
    weight_label: str = Field(sa_column=Column(String(64), nullable=False))
    unit_price_snapshot: int = Field(sa_column=Column(BigInteger, nullable=False))
    item_total: int = Field(sa_column=Column(BigInteger, nullable=False))
    is_custom: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    customizations: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON, nullable=True))

# ---------------------------------------------------------------------------------------------------------

class Coupon(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    code: str = Field(sa_column=Column(String(32), unique=True, nullable=False, index=True))
    discount_type: str = Field(sa_column=Column(String(16), nullable=False))
    discount_value: int = Field(sa_column=Column(Integer, nullable=False))
    max_discount: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    min_order_amount: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    reward_tier_name: str = Field(sa_column=Column(String(64), nullable=False))
    reward_tier_points_cost: int = Field(sa_column=Column(Integer, nullable=False))
    is_used: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    used_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    used_in_order: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        Index("ix_coupon_user_used_expiry", "user_id", "is_used", "expires_at"),
    )
