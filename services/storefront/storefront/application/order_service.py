from datetime import date, datetime, time as dtime
from typing import Optional
import json
import math
import random
import time

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from shared.core import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.domain.enums import GUEST_PREFIX, PAYMENT_TRANSITIONS, OrderStatus, PaymentStatus
from storefront.domain.exceptions import InvalidTransitionError, NotFoundError, OrderCreationError, ValidationError
from storefront.domain.models import Order, OrderItem, utcnow
from .coupon_service import CouponService
from .schemas import InvoiceDetails, OrderCreate, OrderUpdate, QuoteRead

logger = get_logger(__name__)

DEFAULT_CUSTOMER_NAME = "Хэрэглэгч"
DEFAULT_ITEM_NAME = "Бараа"
MAX_ORDER_NUMBER_ATTEMPTS = 10


def generate_order_number(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """ORD + yymmdd + 4 random digits, e.g. ORD2501151234."""
    now = now or utcnow()
    rng = rng or random
    return f"ORD{now:%y%m%d}{rng.randint(1000, 9999)}"


def guest_user_id() -> str:
    return f"{GUEST_PREFIX}{int(time.time() * 1000)}"


def shipping_cost_for(subtotal: float, delivery: bool, settings: Settings) -> float:
    if not delivery or subtotal > settings.FREE_SHIPPING_THRESHOLD:
        return 0.0
    return float(settings.DEFAULT_SHIPPING_COST)


def compute_quote(
    subtotal: float,
    discount_amount: float = 0,
    tax: float = 0,
    delivery: bool = True,
    settings: Optional[Settings] = None,
) -> QuoteRead:
    settings = settings or get_settings()
    shipping = shipping_cost_for(subtotal, delivery, settings)
    grand_total = max(subtotal - discount_amount, 0) + shipping + tax
    return QuoteRead(
        subtotal=subtotal,
        discount_amount=discount_amount,
        shipping_cost=shipping,
        tax=tax,
        grand_total=round(grand_total, 2),
    )


def dump_invoice_data(data: Optional[dict]) -> Optional[str]:
    return json.dumps(data, ensure_ascii=False) if data else None


class OrderService:
    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def _visible(self):
        return self.db.query(Order).options(selectinload(Order.items)).filter(
            or_(Order.is_deleted.is_(False), Order.is_deleted.is_(None))
        )

    def _get(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if not order:
            raise NotFoundError("Захиалга", order_id, f"ID-тай захиалга олдсонгүй: {order_id}")
        return order

    def _new_order_number(self) -> str:
        for _ in range(MAX_ORDER_NUMBER_ATTEMPTS):
            number = generate_order_number()
            if not self.db.query(Order.id).filter(Order.order_number == number).first():
                return number
        raise OrderCreationError()

    # Queries

    def find_one(self, order_id: int) -> Order:
        order = self._visible().filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError("Захиалга", order_id, f"ID-тай захиалга олдсонгүй: {order_id}")
        return order

    def find_by_order_number(self, order_number: str) -> Order:
        order = self._visible().filter(Order.order_number == order_number).first()
        if not order:
            raise NotFoundError(
                "Захиалга", order_number, f"Захиалгын дугаартай захиалга олдсонгүй: {order_number}"
            )
        return order

    def find_by_invoice(self, invoice_id: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.invoice_id == invoice_id)
            .first()
        )

    def find_all_by_user(self, user_id: str) -> list[Order]:
        return (
            self._visible()
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .all()
        )

    def find_last_delivered(self, user_id: str) -> Optional[Order]:
        return (
            self._visible()
            .filter(Order.user_id == user_id, Order.order_status == OrderStatus.DELIVERED)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .first()
        )

    def find_all(
        self,
        page: int = 1,
        limit: int = 20,
        order_status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> tuple[list[Order], int, int]:
        """Admin listing; returns (orders, total, total_pages)."""
        query = self._visible()
        if order_status is not None:
            query = query.filter(Order.order_status == order_status)
        if payment_status is not None:
            query = query.filter(Order.payment_status == payment_status)
        if start_date:
            query = query.filter(Order.created_at >= datetime.combine(start_date, dtime.min))
        if end_date:
            query = query.filter(Order.created_at <= datetime.combine(end_date, dtime.max))

        total = query.count()
        orders = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return orders, total, math.ceil(total / limit) if limit else 0

    def quote(self, subtotal: float, discount_amount: float = 0, tax: float = 0, delivery: bool = True) -> QuoteRead:
        return compute_quote(subtotal, discount_amount, tax, delivery, self.settings)

    # Commands

    def create(self, data: OrderCreate, user_id: Optional[str] = None) -> Order:
        if not data.items:
            raise ValidationError("Захиалгын бараа хоосон байна!")

        shipping_cost = data.shipping_cost
        if shipping_cost is None:
            shipping_cost = self.settings.DEFAULT_SHIPPING_COST

        expected = data.subtotal + shipping_cost + data.tax - (data.coupon_discount or 0)
        if abs(expected - data.grand_total) > 0.01:
            logger.warning(
                f"Submitted grand_total {data.grand_total} differs from computed {expected}",
                extra={"extra_fields": {"subtotal": data.subtotal, "shipping_cost": shipping_cost}},
            )

        order = Order(
            order_number=self._new_order_number(),
            user_id=user_id or data.user_id or guest_user_id(),
            subtotal=data.subtotal,
            shipping_cost=shipping_cost,
            tax=data.tax,
            grand_total=data.grand_total,
            payment_method=int(data.payment_method),
            payment_status=int(PaymentStatus.PENDING),
            order_status=int(OrderStatus.PROCESSING),
            shipping_address=data.shipping_address.strip(),
            district=data.district or None,
            khoroo=data.khoroo or None,
            phone_number=data.phone_number,
            customer_name=(data.customer_name or "").strip() or DEFAULT_CUSTOMER_NAME,
            notes=data.notes,
            invoice_data=dump_invoice_data(data.invoice_data),
        )
        order.items = [
            OrderItem(
                product_id=item.product_id,
                name=item.name or DEFAULT_ITEM_NAME,
                name_mn=item.name_mn or item.name or DEFAULT_ITEM_NAME,
                price=item.price,
                quantity=item.quantity,
                image=item.image,
                sku=item.sku,
            )
            for item in data.items
        ]
        self.db.add(order)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Create order error: {e}", exc_info=True)
            raise OrderCreationError() from e
        self.db.refresh(order)
        logger.info(
            f"Order {order.order_number} created",
            extra={"extra_fields": {"order_id": order.id, "items": len(data.items)}},
        )

        # Separate transaction: a failed redemption never undoes the order
        if data.coupon_id and data.coupon_discount:
            try:
                CouponService(self.db).record_usage(
                    data.coupon_id, order.user_id, order.id, data.coupon_discount
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Error recording coupon usage (order already created): {e}")
        return order

    def update(self, order_id: int, data: OrderUpdate) -> Order:
        order = self._get(order_id)
        if order.is_deleted and data.is_deleted is not False:
            raise ValidationError("Устгагдсан захиалгыг засах боломжгүй. Эхлээд сэргээх хэрэгтэй.")

        if data.payment_status is not None:
            self._check_payment_transition(order, data.payment_status)
            order.payment_status = int(data.payment_status)
        if data.order_status is not None:
            self._apply_order_status(order, data.order_status)
        for field in ("shipping_address", "phone_number", "customer_name", "notes", "district", "khoroo", "is_deleted"):
            value = getattr(data, field)
            if value is not None:
                setattr(order, field, value)
        if "invoice_data" in data.model_fields_set:
            order.invoice_data = dump_invoice_data(data.invoice_data)

        if data.items is not None:
            existing = {item.id: item for item in order.items}
            for item in data.items:
                name_mn = item.name_mn or item.name
                if item.id and item.id in existing:
                    target = existing[item.id]
                    target.name = item.name
                    target.name_mn = name_mn
                    target.price = item.price
                    target.quantity = item.quantity
                else:
                    order.items.append(
                        OrderItem(
                            product_id=item.product_id,
                            name=item.name or DEFAULT_ITEM_NAME,
                            name_mn=name_mn or DEFAULT_ITEM_NAME,
                            price=item.price,
                            quantity=item.quantity,
                            image=item.image,
                            sku=item.sku,
                        )
                    )
            subtotal = sum(float(i.price) * i.quantity for i in order.items)
            order.subtotal = subtotal
            order.grand_total = subtotal + float(order.shipping_cost or 0) + float(order.tax or 0)

        self.db.commit()
        self.db.refresh(order)
        return order

    def _apply_order_status(self, order: Order, status: OrderStatus) -> None:
        if status == OrderStatus.PROCESSING and order.order_status != OrderStatus.PROCESSING \
                and not order.processing_started_at:
            order.processing_started_at = utcnow()
        order.order_status = int(status)

    def update_status(self, order_id: int, status: OrderStatus) -> Order:
        order = self._get(order_id)
        self._apply_order_status(order, status)
        self.db.commit()
        self.db.refresh(order)
        return order

    @staticmethod
    def _check_payment_transition(order: Order, status: PaymentStatus) -> None:
        current = PaymentStatus(order.payment_status)
        if status != current and status not in PAYMENT_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Төлбөрийн төлөв {current.name}-с {status.name} руу шилжих боломжгүй",
                {"current": int(current), "requested": int(status)},
            )

    def update_payment_status(self, order_id: int, status: PaymentStatus) -> Order:
        """Admin move along PAYMENT_TRANSITIONS; re-applying the current status is a no-op."""
        order = self._get(order_id)
        self._check_payment_transition(order, status)
        if order.payment_status != status:
            order.payment_status = int(status)
            self.db.commit()
            self.db.refresh(order)
        return order

    def transition_payment_status(self, order_id: int, status: PaymentStatus) -> bool:
        """Flip a pending order to ``status`` in one conditional UPDATE.

        Returns True only for the caller whose update changed the row; concurrent
        pollers and the webhook race here and exactly one of them wins.
        """
        result = self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == int(PaymentStatus.PENDING))
            .values(payment_status=int(status), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        won = result.rowcount == 1
        if won:
            order = self.db.get(Order, order_id)
            if order is not None:
                self.db.refresh(order)
        return won

    def soft_delete(self, order_id: int) -> None:
        order = self._get(order_id)
        order.is_deleted = True
        self.db.commit()

    def attach_invoice_details(self, order_id: int, details: InvoiceDetails) -> Order:
        """Persist contact fields and the enriched invoice data when an invoice is issued."""
        order = self._get(order_id)
        if details.address:
            order.shipping_address = details.address
        if details.district is not None:
            order.district = details.district
        if details.khoroo is not None:
            order.khoroo = details.khoroo
        if details.phone:
            order.phone_number = details.phone
        if details.invoice_data:
            raw = details.invoice_data
            enhanced = dict(raw)
            enhanced["invoiceNumber"] = raw.get("invoiceNumber") or order.order_number
            enhanced["invoiceDate"] = (
                raw.get("invoiceDate") or raw.get("invoice_date") or utcnow().date().isoformat()
            )
            enhanced["customerRegister"] = (
                raw.get("customerRegister") or raw.get("customer_register") or raw.get("register")
            )
            enhanced["customerEmail"] = (
                raw.get("customerEmail") or raw.get("customer_email") or raw.get("email")
            )
            order.invoice_data = dump_invoice_data(enhanced)
        self.db.commit()
        self.db.refresh(order)
        return order
