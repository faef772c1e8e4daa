from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session, sessionmaker

from storefront.infrastructure.db import get_db, get_session_factory
from storefront.infrastructure.qpay_client import QPayClient, get_qpay_client
from storefront.infrastructure.chuchu_client import ChuchuClient, get_chuchu_client
from storefront.application.payment_service import PaymentService
from storefront.application.side_effects import run_order_side_effects
from storefront.application.schemas import (
    CheckoutInvoiceRead,
    InvoiceCreate,
    OrderByInvoiceRead,
    PaymentCheckRead,
    PaymentState,
    QPayPaymentList,
    WebhookAck,
    WebhookPayload,
)
from storefront.domain.enums import DispatchTrigger
from .auth import CurrentUser, require_admin

router = APIRouter(prefix="/qpay", tags=["qpay"])


@router.post("/checkout/invoice", response_model=CheckoutInvoiceRead)
def create_checkout_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    qpay: QPayClient = Depends(get_qpay_client),
):
    result = PaymentService(db, qpay).create_invoice(payload.order_id, payload.amount, payload.description)
    return CheckoutInvoiceRead(order=result.order, invoice=result.invoice)


@router.get("/check/{invoice_id}", response_model=PaymentCheckRead)
def check_payment_status(
    invoice_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    qpay: QPayClient = Depends(get_qpay_client),
    session_factory: sessionmaker = Depends(get_session_factory),
    chuchu: ChuchuClient = Depends(get_chuchu_client),
):
    """Polled by the checkout page until the invoice is paid."""
    result = PaymentService(db, qpay).check_status(invoice_id)
    if result.newly_paid:
        background_tasks.add_task(
            run_order_side_effects, session_factory, chuchu, result.order.id, DispatchTrigger.PAYMENT
        )
    return PaymentCheckRead(
        order=result.order,
        payment=PaymentState(status=result.status, is_paid=result.is_paid, data=result.data),
        transaction=result.transaction,
    )


@router.post("/webhook", response_model=WebhookAck)
def payment_webhook(
    payload: WebhookPayload,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    qpay: QPayClient = Depends(get_qpay_client),
    session_factory: sessionmaker = Depends(get_session_factory),
    chuchu: ChuchuClient = Depends(get_chuchu_client),
):
    result = PaymentService(db, qpay).webhook(payload)
    if result.newly_paid:
        background_tasks.add_task(
            run_order_side_effects, session_factory, chuchu, result.order.id, DispatchTrigger.PAYMENT
        )
    return WebhookAck(order_id=result.order.id, status=result.order.payment_status, transaction=result.transaction)


@router.get("/invoice/{invoice_id}", response_model=OrderByInvoiceRead)
def get_order_by_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    qpay: QPayClient = Depends(get_qpay_client),
):
    order, transaction = PaymentService(db, qpay).get_order_by_invoice(invoice_id)
    return OrderByInvoiceRead(order=order, transaction=transaction)


@router.get("/payments", response_model=QPayPaymentList)
def list_payments(
    db: Session = Depends(get_db),
    qpay: QPayClient = Depends(get_qpay_client),
    _: CurrentUser = Depends(require_admin),
    page: int = Query(1, ge=1),
    limit: int = Query(1000, ge=1, le=1000),
    status: Optional[str] = Query(None, pattern="^(paid|pending|cancelled)$"),
):
    payments, total, total_pages = PaymentService(db, qpay).list_payments(page, limit, status)
    return QPayPaymentList(payments=payments, total=total, page=page, total_pages=total_pages)
