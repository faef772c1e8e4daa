from fastapi import APIRouter, Body, Depends, Response
from sqlalchemy.orm import Session

from storefront.infrastructure.db import get_db
from storefront.application.content_service import (
    BankAccountService,
    BannerService,
    ContentService,
    FooterService,
    GiftSettingService,
    PartnerService,
)
from storefront.application.schemas import (
    BankAccountCreate,
    BankAccountRead,
    BankAccountUpdate,
    BannerCreate,
    BannerRead,
    BannerUpdate,
    FooterRead,
    FooterUpsert,
    GiftEligibilityRead,
    GiftEligibilityRequest,
    GiftSettingRead,
    GiftSettingUpsert,
    PartnerCreate,
    PartnerRead,
    PartnerUpdate,
)
from .auth import CurrentUser, require_admin


def crud_router(prefix: str, tag: str, service_cls: type[ContentService], create_schema, update_schema, read_schema) -> APIRouter:
    """Public active listing plus admin CRUD for one content table."""
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.get("/active", response_model=list[read_schema])
    def list_active(db: Session = Depends(get_db)):
        return service_cls(db).list(active_only=True)

    @router.get("", response_model=list[read_schema])
    def list_all(db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
        return service_cls(db).list()

    @router.get("/{item_id}", response_model=read_schema)
    def get_one(item_id: int, db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
        return service_cls(db).get(item_id)

    @router.post("", response_model=read_schema, status_code=201)
    def create(
        payload: create_schema = Body(...),
        db: Session = Depends(get_db),
        _: CurrentUser = Depends(require_admin),
    ):
        return service_cls(db).create(payload)

    @router.put("/{item_id}", response_model=read_schema)
    def update(
        item_id: int,
        payload: update_schema = Body(...),
        db: Session = Depends(get_db),
        _: CurrentUser = Depends(require_admin),
    ):
        return service_cls(db).update(item_id, payload)

    @router.delete("/{item_id}", status_code=204)
    def delete(item_id: int, db: Session = Depends(get_db), _: CurrentUser = Depends(require_admin)):
        service_cls(db).delete(item_id)
        return None

    return router


bank_accounts_router = crud_router(
    "/bank-accounts", "bank-accounts", BankAccountService, BankAccountCreate, BankAccountUpdate, BankAccountRead
)
banners_router = crud_router("/banners", "banners", BannerService, BannerCreate, BannerUpdate, BannerRead)
partners_router = crud_router("/partners", "partners", PartnerService, PartnerCreate, PartnerUpdate, PartnerRead)

footer_router = APIRouter(prefix="/footer", tags=["footer"])


@footer_router.get("", response_model=FooterRead)
def get_footer(db: Session = Depends(get_db)):
    return FooterService(db).get()


@footer_router.put("", response_model=FooterRead)
def upsert_footer(
    payload: FooterUpsert,
    response: Response,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    footer, created = FooterService(db).upsert(payload)
    if created:
        response.status_code = 201
    return footer


gift_settings_router = APIRouter(prefix="/gift-settings", tags=["gift-settings"])


@gift_settings_router.get("", response_model=GiftSettingRead)
def get_gift_setting(db: Session = Depends(get_db)):
    return GiftSettingService(db).get()


@gift_settings_router.put("", response_model=GiftSettingRead)
def upsert_gift_setting(
    payload: GiftSettingUpsert,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(require_admin),
):
    return GiftSettingService(db).upsert(payload)


@gift_settings_router.post("/check-eligibility", response_model=GiftEligibilityRead)
def check_gift_eligibility(payload: GiftEligibilityRequest, db: Session = Depends(get_db)):
    return GiftSettingService(db).check_eligibility(payload.cart_total, payload.item_count)


routers = [bank_accounts_router, banners_router, partners_router, footer_router, gift_settings_router]
