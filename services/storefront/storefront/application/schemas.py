from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from typing import Any, Optional
import re

from storefront.domain.enums import PaymentMethod, PaymentStatus, OrderStatus

PHONE_RE = re.compile(r"^(\+?976)?\d{8}$")
# Base64 QR payloads above this size are dropped from responses (URLs are always kept)
MAX_INLINE_QR_CHARS = 50000

def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

class RequestModel(BaseModel):
    """Request bodies accept both the storefront's camelCase and snake_case keys."""
    class Config:
        alias_generator = to_camel
        populate_by_name = True

# Orders

class OrderItemCreate(RequestModel):
    product_id: str = ""
    name: str = "Бараа"
    name_mn: Optional[str] = None
    price: float = Field(0, ge=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    sku: Optional[str] = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id_as_str(cls, v):
        return "" if v is None else str(v)

class OrderCreate(RequestModel):
    items: list[OrderItemCreate] = []
    user_id: Optional[str] = None
    subtotal: float = Field(0, ge=0)
    # None means "not submitted": the configured default applies
    shipping_cost: Optional[float] = Field(None, ge=0)
    tax: float = Field(0, ge=0)
    grand_total: float = Field(0, ge=0)
    payment_method: PaymentMethod = PaymentMethod.QPAY
    shipping_address: str = Field(..., min_length=1)
    district: Optional[str] = None
    khoroo: Optional[str] = None
    phone_number: str
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    invoice_data: Optional[dict[str, Any]] = None
    coupon_id: Optional[int] = None
    coupon_discount: Optional[float] = Field(None, ge=0)

    @field_validator("shipping_address")
    @classmethod
    def _non_blank_address(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Хүргэлтийн хаяг хоосон байна")
        return v.strip()

    @field_validator("phone_number")
    @classmethod
    def _valid_phone(cls, v: str) -> str:
        cleaned = re.sub(r"[\s\-()]", "", v)
        if not PHONE_RE.match(cleaned):
            raise ValueError("Утасны дугаар буруу байна")
        return cleaned

class OrderItemUpdate(RequestModel):
    id: Optional[int] = None
    product_id: str = ""
    name: str = "Бараа"
    name_mn: Optional[str] = None
    price: float = Field(0, ge=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None
    sku: Optional[str] = None

    @field_validator("product_id", mode="before")
    @classmethod
    def _product_id_as_str(cls, v):
        return "" if v is None else str(v)

class OrderUpdate(RequestModel):
    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    shipping_address: Optional[str] = None
    phone_number: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    district: Optional[str] = None
    khoroo: Optional[str] = None
    is_deleted: Optional[bool] = None
    invoice_data: Optional[dict[str, Any]] = None
    items: Optional[list[OrderItemUpdate]] = None

class OrderStatusUpdate(RequestModel):
    order_status: OrderStatus

class PaymentStatusUpdate(RequestModel):
    payment_status: PaymentStatus

class InvoiceDetails(RequestModel):
    address: Optional[str] = None
    district: Optional[str] = None
    khoroo: Optional[str] = None
    phone: Optional[str] = None
    invoice_data: Optional[dict[str, Any]] = None

class QuoteRequest(RequestModel):
    subtotal: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    delivery: bool = True

class QuoteRead(BaseModel):
    subtotal: float
    discount_amount: float
    shipping_cost: float
    tax: float
    grand_total: float

class OrderItemRead(BaseModel):
    id: int
    product_id: str
    name: str
    name_mn: str
    price: float
    quantity: int
    image: Optional[str] = None
    sku: Optional[str] = None
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: int
    order_number: str
    user_id: str
    subtotal: float
    shipping_cost: float
    tax: float
    grand_total: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    shipping_address: str
    district: Optional[str] = None
    khoroo: Optional[str] = None
    phone_number: str
    customer_name: str
    notes: Optional[str] = None
    invoice_data: Optional[str] = None
    invoice_id: Optional[str] = None
    qr_image: Optional[str] = None
    qr_text: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead] = []
    class Config:
        from_attributes = True

    @field_validator("qr_image")
    @classmethod
    def _drop_large_inline_qr(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("http://", "https://")) and len(v) > MAX_INLINE_QR_CHARS:
            return None
        return v

class OrderList(BaseModel):
    orders: list[OrderRead]
    total: int
    page: int
    total_pages: int

class DeliveryResultRead(BaseModel):
    success: bool
    reason: Optional[str] = None
    data: Any = None
    error: Any = None

# QPay

class InvoiceCreate(RequestModel):
    order_id: Optional[int] = None
    amount: Optional[float] = None
    description: Optional[str] = None

class InvoiceRead(BaseModel):
    invoice_id: str
    qr_image: Optional[str] = None
    qr_text: Optional[str] = None
    qr_code: Optional[str] = None
    # Deep links into bank mobile apps
    urls: list[dict[str, Any]] = []

class CheckoutInvoiceRead(BaseModel):
    success: bool = True
    order: OrderRead
    invoice: InvoiceRead

class TransactionInfo(BaseModel):
    ORDERID: Optional[str] = None
    Phone: Optional[str] = None
    Name: Optional[str] = None

class PaymentState(BaseModel):
    status: str
    is_paid: bool
    data: Any = None

class PaymentCheckRead(BaseModel):
    success: bool = True
    order: OrderRead
    payment: PaymentState
    transaction: TransactionInfo

class OrderByInvoiceRead(BaseModel):
    success: bool = True
    order: OrderRead
    transaction: TransactionInfo

class WebhookPayload(BaseModel):
    object_type: Optional[str] = None
    object_id: Optional[str] = None
    payment_status: Optional[str] = None

class WebhookAck(BaseModel):
    success: bool = True
    message: str = "Webhook processed successfully"
    order_id: int
    status: PaymentStatus
    transaction: TransactionInfo

class QPayPaymentRead(BaseModel):
    id: str
    invoice_id: str
    amount: float
    status: str
    description: str
    customer_name: str
    customer_phone: str
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    qpay_invoice_id: str
    payment_url: str
    order_number: str

class QPayPaymentList(BaseModel):
    payments: list[QPayPaymentRead]
    total: int
    page: int
    total_pages: int

# Coupons

class CouponValidateRequest(RequestModel):
    code: Optional[str] = None
    subtotal: Optional[float] = None
    user_id: Optional[str] = None

class CouponValidationRead(BaseModel):
    coupon_id: int
    code: str
    discount_percentage: float
    discount_amount: float
    expires_at: datetime
    message: str = "Урамшууллын код хүчинтэй"

class CouponCreate(RequestModel):
    discount_percentage: float
    expires_at: datetime
    is_active: bool = True
    # When given the coupon is manual (once per user); otherwise a code is generated
    code: Optional[str] = None

    @field_validator("expires_at")
    @classmethod
    def _naive_expiry(cls, v):
        return _to_naive_utc(v)

class CouponUpdate(RequestModel):
    discount_percentage: Optional[float] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator("expires_at")
    @classmethod
    def _naive_expiry(cls, v):
        return _to_naive_utc(v)

class CouponRead(BaseModel):
    id: int
    code: str
    discount_percentage: float
    expires_at: datetime
    is_active: bool
    is_manual: bool
    created_at: datetime
    usage_count: int = 0
    class Config:
        from_attributes = True

class CouponStats(BaseModel):
    total: int
    active: int
    expired: int
    inactive: int
    total_usages: int
    total_discount: float

# Addresses

class AddressCreate(RequestModel):
    city: Optional[str] = None
    district: Optional[str] = None
    khoroo: Optional[str] = None
    address: Optional[str] = None
    is_default: bool = False

class AddressRead(BaseModel):
    id: int
    user_id: str
    city: str
    district: Optional[str] = None
    khoroo: Optional[str] = None
    address: str
    is_default: bool
    created_at: datetime
    class Config:
        from_attributes = True

class AddressSaveResult(BaseModel):
    success: bool = True
    message: str
    address: AddressRead
    is_duplicate: bool

# Admin content

class BankAccountCreate(RequestModel):
    bank_name: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=1)
    account_name: str = Field(..., min_length=1)
    is_active: bool = True
    display_order: int = 0
    color_scheme: Optional[str] = "blue"

class BankAccountUpdate(RequestModel):
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    account_name: Optional[str] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None
    color_scheme: Optional[str] = None

class BankAccountRead(BaseModel):
    id: int
    bank_name: str
    account_number: str
    account_name: str
    is_active: bool
    display_order: int
    color_scheme: Optional[str] = None
    class Config:
        from_attributes = True

class BannerCreate(RequestModel):
    image: str = Field(..., min_length=1)
    text: Optional[str] = None
    link: Optional[str] = None
    order: int = 0
    is_active: bool = True

class BannerUpdate(RequestModel):
    image: Optional[str] = None
    text: Optional[str] = None
    link: Optional[str] = None
    order: Optional[int] = None
    is_active: Optional[bool] = None

class BannerRead(BaseModel):
    id: int
    image: str
    text: Optional[str] = None
    link: Optional[str] = None
    order: int
    is_active: bool
    class Config:
        from_attributes = True

class PartnerCreate(RequestModel):
    name: str = Field(..., min_length=1)
    logo: str = Field(..., min_length=1)
    website_url: Optional[str] = None
    order: int = 0
    is_active: bool = True

class PartnerUpdate(RequestModel):
    name: Optional[str] = None
    logo: Optional[str] = None
    website_url: Optional[str] = None
    order: Optional[int] = None
    is_active: Optional[bool] = None

class PartnerRead(BaseModel):
    id: int
    name: str
    logo: str
    website_url: Optional[str] = None
    order: int
    is_active: bool
    class Config:
        from_attributes = True

class FooterUpsert(RequestModel):
    logo_url: Optional[str] = None
    company_name: Optional[str] = None
    company_suffix: Optional[str] = None
    description: Optional[str] = None
    social_links: Optional[list[dict[str, Any]]] = None
    quick_links: Optional[list[dict[str, Any]]] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    copyright_text: Optional[str] = None
    footer_links: Optional[list[dict[str, Any]]] = None

class FooterRead(BaseModel):
    id: Optional[int] = None
    logo_url: Optional[str] = None
    company_name: str = "Tsaas.mn"
    company_suffix: Optional[str] = ".mn"
    description: Optional[str] = None
    social_links: list[dict[str, Any]] = []
    quick_links: list[dict[str, Any]] = []
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    copyright_text: Optional[str] = "© 2025 Tsaas.mn"
    footer_links: list[dict[str, Any]] = []
    class Config:
        from_attributes = True

class GiftSettingUpsert(RequestModel):
    threshold_type: Optional[str] = None
    threshold_value: Optional[float] = None
    is_active: bool = True

class GiftSettingRead(BaseModel):
    id: Optional[int] = None
    threshold_type: str = "amount"
    threshold_value: float = 100000
    is_active: bool = False
    class Config:
        from_attributes = True

class GiftEligibilityRequest(RequestModel):
    cart_total: Optional[float] = None
    item_count: int = Field(0, ge=0)

class GiftEligibilityRead(BaseModel):
    eligible: bool
    threshold_type: str
    threshold_value: float
    remaining: float
