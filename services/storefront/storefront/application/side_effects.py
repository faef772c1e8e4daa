"""
Post-order side effects.

Address capture and courier dispatch run after the response has been sent
(FastAPI BackgroundTasks). Each task opens its own session: the request session
is closed by then. Failures are logged and never reach the customer.
"""
from typing import Any, Dict, Optional

from sqlalchemy.orm import selectinload, sessionmaker

from shared.core import get_logger
from storefront.domain.enums import DispatchTrigger
from storefront.domain.models import Order
from storefront.infrastructure.chuchu_client import ChuchuClient
from .address_service import AddressService
from .delivery_service import DeliveryDispatcher

logger = get_logger(__name__)

EXPECTED_SKIPS = {"guest_user", "pickup_order"}


def _load(db, order_id: int) -> Optional[Order]:
    return db.query(Order).options(selectinload(Order.items)).filter(Order.id == order_id).first()


def capture_address(db, order: Order, context: str) -> None:
    result = AddressService(db).save_address_from_order(order)
    if result.success:
        state = "already exists" if result.is_duplicate else "saved"
        logger.info(f"Address {state} for user when {context} for order {order.order_number}")
    elif result.reason not in EXPECTED_SKIPS:
        logger.warning(f"Failed to save address when {context} for order {order.order_number}: {result.reason}")


def run_order_side_effects(
    session_factory: sessionmaker,
    chuchu: ChuchuClient,
    order_id: int,
    trigger: DispatchTrigger,
    address: Optional[str] = None,
    district: Optional[str] = None,
    khoroo: Optional[str] = None,
    phone: Optional[str] = None,
    comment: Optional[str] = None,
    invoice: Optional[Dict[str, Any]] = None,
) -> None:
    """Notify the courier and remember the address for one order lifecycle trigger."""
    context = {
        DispatchTrigger.INVOICE: "invoice was created",
        DispatchTrigger.PDF: "PDF was downloaded",
        DispatchTrigger.PAYMENT: "QPay payment succeeded",
        DispatchTrigger.MANUAL: "delivery was requested",
    }[trigger]

    db = session_factory()
    try:
        order = _load(db, order_id)
        if order is None:
            logger.warning(f"Order {order_id} vanished before side effects ran ({trigger.value})")
            return

        try:
            result = DeliveryDispatcher(db, chuchu).notify(
                order, trigger, address=address, district=district, khoroo=khoroo,
                phone=phone, comment=comment, invoice=invoice,
            )
            if result.success:
                logger.info(f"e-chuchu record created when {context} for order {order.order_number}")
            elif result.reason not in ("pickup_or_no_address", "already_dispatched"):
                logger.warning(
                    f"e-chuchu call failed when {context} for order {order.order_number}: "
                    f"{result.error or result.reason}"
                )
        except Exception:
            db.rollback()
            logger.error(f"Error calling e-chuchu when {context} for order {order_id}", exc_info=True)

        try:
            capture_address(db, _load(db, order_id), context)
        except Exception:
            db.rollback()
            logger.error(f"Error saving address when {context} for order {order_id}", exc_info=True)
    finally:
        db.close()
