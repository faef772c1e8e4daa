from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Numeric, DateTime, Integer, Boolean, Text, JSON, Index, UniqueConstraint, text
from datetime import datetime, timezone
from typing import Optional

from .enums import PaymentMethod, PaymentStatus, OrderStatus, DispatchStatus

def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class Base(DeclarativeBase):
    pass

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    # Authenticated user id or guest_<epoch-ms>; users live in the auth service
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    subtotal: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    shipping_cost: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    tax: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    grand_total: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    payment_method: Mapped[int] = mapped_column(Integer, default=PaymentMethod.QPAY)
    payment_status: Mapped[int] = mapped_column(Integer, default=PaymentStatus.PENDING, index=True)
    order_status: Mapped[int] = mapped_column(Integer, default=OrderStatus.PROCESSING, index=True)
    shipping_address: Mapped[str] = mapped_column(Text)
    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    khoroo: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(50))
    customer_name: Mapped[str] = mapped_column(String(200))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # JSON text: invoiceNumber, invoiceDate, customerRegister, customerEmail
    invoice_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    invoice_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    qr_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qr_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    # Catalog ids are opaque strings (UUIDs in the product service)
    product_id: Mapped[str] = mapped_column(String(100), default="")
    name: Mapped[str] = mapped_column(String(255))
    name_mn: Mapped[str] = mapped_column(String(255))
    price: Mapped[float] = mapped_column(Numeric(12, 2))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    order: Mapped[Order] = relationship("Order", back_populates="items")

class Coupon(Base):
    __tablename__ = "coupons"
    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    discount_percentage: Mapped[float] = mapped_column(Numeric(5, 2))
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    # Manual: admin-chosen, once per user. Generated: random, once system-wide.
    is_manual: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    usages: Mapped[list["CouponUsage"]] = relationship(
        "CouponUsage", back_populates="coupon", cascade="all, delete-orphan"
    )

class CouponUsage(Base):
    __tablename__ = "coupon_usage"
    __table_args__ = (
        UniqueConstraint("redemption_key", name="uq_coupon_usage_redemption_key"),
    )
    id: Mapped[int] = mapped_column(primary_key=True)
    coupon_id: Mapped[int] = mapped_column(ForeignKey("coupons.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    discount_amount: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    # "<coupon_id>" for generated coupons, "<coupon_id>:<user_id>" for manual ones
    redemption_key: Mapped[str] = mapped_column(String(150))
    used_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    coupon: Mapped[Coupon] = relationship("Coupon", back_populates="usages")

class Address(Base):
    __tablename__ = "addresses"
    __table_args__ = (
        UniqueConstraint("user_id", "dedup_key", name="uq_addresses_user_dedup"),
        Index(
            "uq_addresses_user_default",
            "user_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    city: Mapped[str] = mapped_column(String(100))
    district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    khoroo: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address: Mapped[str] = mapped_column(Text)
    dedup_key: Mapped[str] = mapped_column(String(64))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class DeliveryDispatch(Base):
    __tablename__ = "delivery_dispatches"
    __table_args__ = (
        UniqueConstraint("order_id", "trigger", name="uq_delivery_dispatch_order_trigger"),
    )
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    trigger: Mapped[str] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), default=DispatchStatus.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class BankAccount(Base):
    __tablename__ = "bank_accounts"
    id: Mapped[int] = mapped_column(primary_key=True)
    bank_name: Mapped[str] = mapped_column(String(100))
    account_number: Mapped[str] = mapped_column(String(50))
    account_name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    color_scheme: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, default="blue")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class Banner(Base):
    __tablename__ = "banners"
    id: Mapped[int] = mapped_column(primary_key=True)
    text: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    link: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image: Mapped[str] = mapped_column(String(500))
    order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class Partner(Base):
    __tablename__ = "partners"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    logo: Mapped[str] = mapped_column(String(500))
    website_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class Footer(Base):
    __tablename__ = "footers"
    id: Mapped[int] = mapped_column(primary_key=True)
    logo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    company_name: Mapped[str] = mapped_column(String(200), default="Tsaas.mn")
    company_suffix: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, default=".mn")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    social_links: Mapped[list] = mapped_column(JSON, default=list)
    quick_links: Mapped[list] = mapped_column(JSON, default=list)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    copyright_text: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, default="© 2025 Tsaas.mn")
    footer_links: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class GiftSetting(Base):
    __tablename__ = "gift_settings"
    id: Mapped[int] = mapped_column(primary_key=True)
    # "amount" compares the cart total in MNT, "count" the number of items
    threshold_type: Mapped[str] = mapped_column(String(10), default="amount")
    threshold_value: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
