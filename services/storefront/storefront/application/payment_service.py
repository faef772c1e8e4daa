from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional
import math
import re
import time

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, selectinload

from shared.core import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.domain.enums import PaymentStatus
from storefront.domain.exceptions import NotFoundError, UpstreamError, ValidationError
from storefront.domain.models import Order, utcnow
from storefront.infrastructure.qpay_client import QPayClient, QPayError
from .order_service import OrderService
from .schemas import InvoiceRead, QPayPaymentRead, TransactionInfo, WebhookPayload

logger = get_logger(__name__)

# Stored QR images above this size are dropped; clients render qr_text instead
MAX_STORED_QR_CHARS = 30000
PENDING_EXPIRY = timedelta(minutes=30)
ORDER_NO_RE = re.compile(r"ECO_([^_]+)")

STATUS_FILTERS = {
    "paid": PaymentStatus.PAID,
    "pending": PaymentStatus.PENDING,
    "cancelled": PaymentStatus.FAILED,
}


def storable_qr_image(qr_image: Any) -> Optional[str]:
    if not isinstance(qr_image, str) or not qr_image:
        return None
    if qr_image.startswith(("http://", "https://")) or len(qr_image) < MAX_STORED_QR_CHARS:
        return qr_image
    logger.warning(f"QR image too large ({len(qr_image)} chars), not storing; qr_text is used instead")
    return None


def sender_invoice_no(order_number: str) -> str:
    return f"ECO_{order_number}_{int(time.time() * 1000)}"


def order_number_from_sender_invoice(value: str) -> str:
    match = ORDER_NO_RE.search(value)
    return match.group(1) if match else value


@dataclass
class InvoiceResult:
    order: Order
    invoice: InvoiceRead


@dataclass
class PaymentCheckResult:
    order: Order
    status: str
    is_paid: bool
    data: Dict[str, Any]
    transaction: TransactionInfo
    # True only for the request whose update moved the order to PAID
    newly_paid: bool = False


@dataclass
class WebhookResult:
    order: Order
    transaction: TransactionInfo
    newly_paid: bool = False


class PaymentService:
    """QPay checkout: invoice issue, payment confirmation by polling or webhook."""

    def __init__(self, db: Session, client: QPayClient, settings: Optional[Settings] = None):
        self.db = db
        self.client = client
        self.settings = settings or get_settings()
        self.orders = OrderService(db, self.settings)

    def _order_by_invoice(self, invoice_id: str) -> Order:
        order = self.orders.find_by_invoice(invoice_id)
        if not order:
            logger.warning(f"Order not found for invoice ID: {invoice_id}")
            raise NotFoundError("Order", invoice_id, "Order not found")
        return order

    @property
    def callback_url(self) -> str:
        return f"{self.settings.NEXT_PUBLIC_API_URL.rstrip('/')}/qpay/webhook"

    def create_invoice(
        self, order_id: Optional[int], amount: Optional[float], description: Optional[str] = None
    ) -> InvoiceResult:
        if not order_id or not amount:
            raise ValidationError("Order ID and amount are required")
        order = self.orders.find_one(order_id)

        try:
            data = self.client.create_invoice(
                sender_invoice_no(order.order_number),
                description or f"Захиалга - {order.order_number}",
                float(amount),
                callback_url=self.callback_url,
            )
        except QPayError as e:
            logger.error(f"Create checkout invoice error for order {order.id}: {e.message}")
            raise UpstreamError("qpay", e.message, {"order_id": order.id}) from e

        qr_image = storable_qr_image(data.get("qr_image"))
        order.invoice_id = data["invoice_id"]
        order.qr_image = qr_image
        order.qr_text = data.get("qr_text")
        self.db.commit()
        self.db.refresh(order)
        logger.info(
            f"QPay invoice {order.invoice_id} issued for order {order.order_number}",
            extra={"extra_fields": {"order_id": order.id, "amount": float(amount)}},
        )

        return InvoiceResult(
            order=order,
            invoice=InvoiceRead(
                invoice_id=data["invoice_id"],
                qr_image=qr_image,
                qr_text=data.get("qr_text"),
                qr_code=data.get("qr_code"),
                urls=data.get("urls") or [],
            ),
        )

    def transaction_info(
        self, invoice_id: Optional[str], order: Optional[Order] = None, payment: Optional[Dict[str, Any]] = None
    ) -> TransactionInfo:
        """{ORDERID, Phone, Name} from the QPay invoice and payment row, order data as fallback."""
        info = TransactionInfo(
            ORDERID=order.order_number if order else None,
            Phone=order.phone_number if order else None,
            Name=order.customer_name if order else None,
        )
        if invoice_id:
            try:
                invoice = self.client.get_invoice(invoice_id)
            except QPayError as e:
                logger.info(f"Could not fetch invoice details for transaction info: {e.message}")
                invoice = {}
            if invoice.get("sender_invoice_no"):
                info.ORDERID = order_number_from_sender_invoice(invoice["sender_invoice_no"])
            receiver = invoice.get("invoice_receiver_data") or {}
            if receiver.get("name"):
                info.Name = receiver["name"]
            if receiver.get("phone"):
                info.Phone = receiver["phone"]
            elif receiver.get("register") and not info.Phone:
                info.Phone = receiver["register"]

        if payment:
            name = payment.get("customer_name") or payment.get("customer_name_mn")
            phone = payment.get("phone") or payment.get("phone_number") or payment.get("customer_phone")
            if name:
                info.Name = name
            if phone:
                info.Phone = phone
            if payment.get("sender_invoice_no") and not info.ORDERID:
                match = ORDER_NO_RE.search(payment["sender_invoice_no"])
                if match:
                    info.ORDERID = match.group(1)
        return info

    def _mark_paid(self, order: Order, source: str) -> bool:
        won = self.orders.transition_payment_status(order.id, PaymentStatus.PAID)
        if won:
            logger.info(f"Order {order.id} marked as paid via {source}")
        self.db.refresh(order)
        return won

    def check_status(self, invoice_id: str) -> PaymentCheckResult:
        order = self._order_by_invoice(invoice_id)
        try:
            data = self.client.check_payment(invoice_id)
        except QPayError as e:
            logger.error(f"Check payment status error for invoice {invoice_id}: {e.message}")
            raise UpstreamError("qpay", e.message, {"order_id": order.id}) from e

        rows = data.get("rows") or []
        payment = rows[0] if rows else None
        status = (payment or {}).get("payment_status") or "PENDING"
        is_paid = status == "PAID"

        newly_paid = False
        if is_paid and order.payment_status != PaymentStatus.PAID:
            newly_paid = self._mark_paid(order, "polling")

        return PaymentCheckResult(
            order=order,
            status=status,
            is_paid=is_paid,
            data=data,
            transaction=self.transaction_info(invoice_id, order, payment),
            newly_paid=newly_paid,
        )

    def webhook(self, payload: WebhookPayload) -> WebhookResult:
        if payload.object_type != "INVOICE" or not payload.object_id:
            raise ValidationError("Invalid webhook data")
        order = self._order_by_invoice(payload.object_id)

        newly_paid = False
        if payload.payment_status == "PAID" and order.payment_status != PaymentStatus.PAID:
            newly_paid = self._mark_paid(order, "webhook")
        elif payload.payment_status == "CANCELLED" and order.payment_status == PaymentStatus.PENDING:
            if self.orders.transition_payment_status(order.id, PaymentStatus.FAILED):
                logger.info(f"Order {order.id} marked as cancelled via webhook")
            self.db.refresh(order)

        return WebhookResult(
            order=order,
            transaction=self.transaction_info(payload.object_id, order),
            newly_paid=newly_paid,
        )

    def get_order_by_invoice(self, invoice_id: str) -> tuple[Order, TransactionInfo]:
        order = self._order_by_invoice(invoice_id)
        return order, self.transaction_info(invoice_id, order)

    def list_payments(
        self, page: int = 1, limit: int = 1000, status: Optional[str] = None
    ) -> tuple[list[QPayPaymentRead], int, int]:
        query = (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(and_(Order.invoice_id.isnot(None), Order.invoice_id != ""))
            .filter(or_(Order.is_deleted.is_(False), Order.is_deleted.is_(None)))
        )
        if status in STATUS_FILTERS:
            query = query.filter(Order.payment_status == int(STATUS_FILTERS[status]))

        total = query.count()
        orders = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        now = utcnow()
        payments = [self._payment_row(order, now) for order in orders]
        return payments, total, math.ceil(total / limit) if limit else 0

    @staticmethod
    def _payment_row(order: Order, now) -> QPayPaymentRead:
        if order.payment_status == PaymentStatus.PAID:
            status = "paid"
        elif order.payment_status == PaymentStatus.FAILED:
            status = "cancelled"
        elif order.payment_status == PaymentStatus.REFUNDED:
            status = "refunded"
        elif order.created_at and now - order.created_at > PENDING_EXPIRY:
            status = "expired"
        else:
            status = "pending"

        description = (
            ", ".join(f"{i.name_mn or i.name} x{i.quantity}" for i in order.items)
            if order.items else "Захиалга"
        )
        return QPayPaymentRead(
            id=str(order.id),
            invoice_id=order.invoice_id or order.order_number,
            amount=float(order.grand_total or 0),
            status=status,
            description=description,
            customer_name=order.customer_name or "Хэрэглэгч",
            customer_phone=order.phone_number or "",
            created_at=order.created_at,
            paid_at=order.updated_at if order.payment_status == PaymentStatus.PAID else None,
            qpay_invoice_id=order.invoice_id or "",
            payment_url=f"https://qpay.mn/pay/{order.invoice_id}" if order.invoice_id else "",
            order_number=order.order_number,
        )
