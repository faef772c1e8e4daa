from datetime import date
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session, sessionmaker

from storefront.infrastructure.db import get_db, get_session_factory
from storefront.infrastructure.chuchu_client import ChuchuClient, get_chuchu_client
from storefront.application.order_service import OrderService
from storefront.application.delivery_service import DeliveryDispatcher
from storefront.application.side_effects import run_order_side_effects
from storefront.application.schemas import (
    DeliveryResultRead,
    InvoiceDetails,
    OrderCreate,
    OrderList,
    OrderRead,
    OrderStatusUpdate,
    OrderUpdate,
    PaymentStatusUpdate,
    QuoteRead,
    QuoteRequest,
)
from storefront.domain.enums import DispatchTrigger, OrderStatus, PaymentStatus
from storefront.domain.exceptions import UpstreamError, ValidationError
from .auth import CurrentUser, get_current_user, get_optional_user, require_admin

router = APIRouter(prefix="/order", tags=["orders"])


@router.post("", response_model=OrderRead, status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_optional_user),
):
    """Checkout: one order plus its item snapshot, payment pending."""
    return OrderService(db).create(payload, user_id=user.id if user else None)


@router.get("", response_model=list[OrderRead])
def list_my_orders(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return OrderService(db).find_all_by_user(user.id)


@router.post("/quote", response_model=QuoteRead)
def quote_order(payload: QuoteRequest, db: Session = Depends(get_db)):
    return OrderService(db).quote(payload.subtotal, payload.discount_amount, payload.tax, payload.delivery)


@router.get("/all", response_model=OrderList)
def list_orders(
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=1000),
    order_status: Optional[OrderStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    orders, total, total_pages = OrderService(db).find_all(
        page, limit, order_status, payment_status, start_date, end_date
    )
    return OrderList(orders=orders, total=total, page=page, total_pages=total_pages)


@router.get("/last-delivered", response_model=Optional[OrderRead])
def last_delivered_order(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    """Most recent delivered order, used by the storefront's re-order prompt."""
    return OrderService(db).find_last_delivered(user.id)


@router.get("/number/{order_number}", response_model=OrderRead)
def get_order_by_number(order_number: str, db: Session = Depends(get_db)):
    return OrderService(db).find_by_order_number(order_number)


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, db: Session = Depends(get_db)):
    return OrderService(db).find_one(order_id)


@router.put("/{order_id}", response_model=OrderRead)
def update_order(
    order_id: int,
    payload: OrderUpdate,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    return OrderService(db).update(order_id, payload)


@router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    return OrderService(db).update_status(order_id, payload.order_status)


@router.patch("/{order_id}/payment", response_model=OrderRead)
def update_payment_status(
    order_id: int,
    payload: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    return OrderService(db).update_payment_status(order_id, payload.payment_status)


@router.delete("/{order_id}", status_code=204)
def delete_order(order_id: int, db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
    OrderService(db).soft_delete(order_id)
    return None


@router.post("/{order_id}/invoice", response_model=OrderRead)
def create_invoice_details(
    order_id: int,
    payload: InvoiceDetails,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    chuchu: ChuchuClient = Depends(get_chuchu_client),
):
    """Store invoice contact details; courier and address book are updated after the response."""
    order = OrderService(db).attach_invoice_details(order_id, payload)
    background_tasks.add_task(
        run_order_side_effects, session_factory, chuchu, order.id, DispatchTrigger.INVOICE,
        comment=payload.khoroo or "",
    )
    return order


@router.post("/{order_id}/pdf-generated", response_model=OrderRead)
def invoice_pdf_generated(
    order_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    chuchu: ChuchuClient = Depends(get_chuchu_client),
):
    """The storefront rendered the invoice PDF client-side."""
    order = OrderService(db).find_one(order_id)
    background_tasks.add_task(run_order_side_effects, session_factory, chuchu, order.id, DispatchTrigger.PDF)
    return order


@router.post("/{order_id}/delivery", response_model=DeliveryResultRead)
def create_delivery(
    order_id: int,
    db: Session = Depends(get_db),
    chuchu: ChuchuClient = Depends(get_chuchu_client),
    _: CurrentUser = Depends(require_admin),
):
    order = OrderService(db).find_one(order_id)
    if not order.items:
        raise ValidationError("Захиалгад бүтээгдэхүүн байхгүй байна")
    result = DeliveryDispatcher(db, chuchu).notify(order, DispatchTrigger.MANUAL)
    if result.reason == "pickup_or_no_address":
        raise ValidationError("Ирж авах захиалга эсвэл хаяг байхгүй", {"reason": result.reason})
    if not result.success:
        raise UpstreamError(
            "chuchu", "Хүргэлтийн мэдээлэл илгээхэд алдаа гарлаа", {"error": result.error}
        )
    return DeliveryResultRead(success=True, data=result.data)
