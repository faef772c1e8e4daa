from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional
import json

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shared.core import get_logger
from storefront.domain.enums import DispatchStatus, DispatchTrigger
from storefront.domain.models import DeliveryDispatch, Order, utcnow
from storefront.infrastructure.chuchu_client import ChuchuClient, ChuchuError
from .address_service import AddressParts, compose_shipping_address, is_pickup, parse_shipping_address

logger = get_logger(__name__)

INVOICE_FIELDS = {
    "invoice_number": ("invoiceNumber", "invoice_number"),
    "invoice_date": ("invoiceDate", "invoice_date"),
    "customer_register": ("customerRegister", "customer_register", "register"),
    "customer_email": ("customerEmail", "customer_email", "email"),
}


@dataclass
class DispatchResult:
    success: bool
    reason: Optional[str] = None
    data: Any = None
    error: Any = None


def load_invoice_data(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Unparseable invoice_data ignored")
        return {}
    return data if isinstance(data, dict) else {}


def invoice_fields(raw: Optional[str], overrides: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
    """Normalize camelCase/snake_case invoice keys; explicit overrides win."""
    data = load_invoice_data(raw)
    fields = {}
    for name, keys in INVOICE_FIELDS.items():
        fields[name] = next((data[k] for k in keys if data.get(k)), None)
    for name, value in (overrides or {}).items():
        if name in fields and value:
            fields[name] = value
    return {name: str(value) if value else "" for name, value in fields.items()}


def build_delivery_payload(
    order: Order,
    address: Optional[str] = None,
    district: Optional[str] = None,
    khoroo: Optional[str] = None,
    phone: Optional[str] = None,
    phone2: Optional[str] = None,
    comment: Optional[str] = None,
    invoice: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    shipping_address = address or order.shipping_address
    parts = parse_shipping_address(shipping_address)
    district = district or order.district or parts.district or ""
    khoroo = khoroo or order.khoroo or parts.khoroo or ""
    full_address = compose_shipping_address(
        AddressParts(city=parts.city, district=district, khoroo=khoroo, address=parts.address)
    )

    payload = {
        "order_code": order.order_number,
        "receivername": order.customer_name or phone or order.phone_number,
        "parcel_info": ", ".join(f"{i.name_mn or i.name} x{i.quantity}" for i in order.items),
        "phone": phone or order.phone_number or "",
        "phone2": phone2 or "",
        "address": full_address or shipping_address,
        "comment": comment or khoroo or "",
        "number": sum(i.quantity for i in order.items),
        "price": str(order.grand_total),
        "track": str(order.id),
    }
    payload.update(invoice_fields(order.invoice_data, invoice))
    return payload


class DeliveryDispatcher:
    """Notifies the e-chuchu courier, at most once per (order, trigger)."""

    def __init__(self, db: Session, client: ChuchuClient):
        self.db = db
        self.client = client
        # A pending row older than one courier timeout belongs to an attempt that died mid-call
        self.stale_after = timedelta(seconds=client.timeout)

    def _claim(self, order_id: int, trigger: DispatchTrigger, force: bool) -> Optional[DeliveryDispatch]:
        """Write the ledger row before calling out; None means another attempt owns it."""
        entry = DeliveryDispatch(order_id=order_id, trigger=trigger.value, status=DispatchStatus.PENDING.value)
        self.db.add(entry)
        try:
            self.db.commit()
            return entry
        except IntegrityError:
            self.db.rollback()

        existing = (
            self.db.query(DeliveryDispatch)
            .filter(DeliveryDispatch.order_id == order_id, DeliveryDispatch.trigger == trigger.value)
            .first()
        )
        if existing is None:
            return None
        if force:
            existing.status = DispatchStatus.PENDING.value
            self.db.commit()
            return existing
        # Failed or abandoned attempts may be retried; the conditional update decides who retries it
        stale_before = utcnow() - self.stale_after
        claimed = self.db.execute(
            update(DeliveryDispatch)
            .where(
                DeliveryDispatch.id == existing.id,
                or_(
                    DeliveryDispatch.status == DispatchStatus.FAILED.value,
                    and_(
                        DeliveryDispatch.status == DispatchStatus.PENDING.value,
                        DeliveryDispatch.updated_at < stale_before,
                    ),
                ),
            )
            .values(status=DispatchStatus.PENDING.value)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if claimed.rowcount != 1:
            return None
        self.db.refresh(existing)
        return existing

    def _record(self, entry: DeliveryDispatch, result: DispatchResult) -> None:
        entry.attempts = (entry.attempts or 0) + 1
        entry.status = DispatchStatus.SENT.value if result.success else DispatchStatus.FAILED.value
        entry.response = result.data if isinstance(result.data, (dict, list)) else None
        entry.error = None if result.success else str(result.error)
        self.db.commit()

    def notify(
        self,
        order: Order,
        trigger: DispatchTrigger,
        address: Optional[str] = None,
        district: Optional[str] = None,
        khoroo: Optional[str] = None,
        phone: Optional[str] = None,
        comment: Optional[str] = None,
        invoice: Optional[Dict[str, Any]] = None,
        force: bool = False,
    ) -> DispatchResult:
        if is_pickup(address or order.shipping_address):
            return DispatchResult(success=False, reason="pickup_or_no_address")
        if not order.items:
            logger.info(f"Skipping courier dispatch for order {order.id}: no items")
            return DispatchResult(success=False, reason="no_items")

        entry = self._claim(order.id, trigger, force or trigger == DispatchTrigger.MANUAL)
        if entry is None:
            logger.info(f"Courier already notified for order {order.order_number} ({trigger.value})")
            return DispatchResult(success=False, reason="already_dispatched")

        payload = build_delivery_payload(
            order, address=address, district=district, khoroo=khoroo,
            phone=phone, comment=comment, invoice=invoice,
        )
        logger.info(
            f"Dispatching order {order.order_number} to courier",
            extra={"extra_fields": {"order_id": order.id, "trigger": trigger.value}},
        )
        try:
            data = self.client.create_delivery(payload)
            result = DispatchResult(success=True, data=data)
        except ChuchuError as e:
            logger.warning(
                f"Courier dispatch failed for order {order.order_number}: {e.message}",
                extra={"extra_fields": {"order_id": order.id, "trigger": trigger.value}},
            )
            result = DispatchResult(success=False, reason="upstream_error", error=e.payload or e.message)
        except Exception as e:
            logger.error(
                f"Unexpected courier dispatch error for order {order.order_number}: {e}",
                exc_info=True,
                extra={"extra_fields": {"order_id": order.id, "trigger": trigger.value}},
            )
            result = DispatchResult(success=False, reason="unexpected_error", error=str(e) or e.__class__.__name__)

        self._record(entry, result)
        return result
