from enum import Enum, IntEnum

class PaymentMethod(IntEnum):
    QPAY = 0
    BANK_TRANSFER = 1
    CARD = 2
    SOCIAL_PAY = 3

class PaymentStatus(IntEnum):
    PENDING = 0
    PAID = 1
    FAILED = 2
    REFUNDED = 3

class OrderStatus(IntEnum):
    PROCESSING = 0
    SHIPPED = 1
    DELIVERED = 2
    CANCELLED = 3

class DispatchTrigger(str, Enum):
    """Points in the order lifecycle that notify the courier."""
    INVOICE = "invoice"
    PDF = "pdf"
    PAYMENT = "payment"
    MANUAL = "manual"

class DispatchStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

# Admin-initiated payment moves; polling/webhook use conditional updates instead
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}

PICKUP_ADDRESS = "Ирж авах"
GUEST_PREFIX = "guest_"
