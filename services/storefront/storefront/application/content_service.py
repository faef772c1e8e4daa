from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from storefront.domain.exceptions import NotFoundError, ValidationError
from storefront.domain.models import BankAccount, Banner, Footer, GiftSetting, Partner
from .schemas import FooterRead, FooterUpsert, GiftEligibilityRead, GiftSettingRead, GiftSettingUpsert

THRESHOLD_TYPES = ("amount", "count")


class ContentService:
    """Admin CRUD over one storefront content table."""

    model = None
    entity = ""
    ordering = ()

    def __init__(self, db: Session):
        self.db = db

    def list(self, active_only: bool = False):
        query = self.db.query(self.model)
        if active_only:
            query = query.filter(self.model.is_active.is_(True))
        return query.order_by(*self.ordering).all()

    def get(self, item_id: int):
        item = self.db.get(self.model, item_id)
        if not item:
            raise NotFoundError(self.entity, item_id, f"{self.entity} with id={item_id} was not found.")
        return item

    def validate(self, values: dict) -> None:
        pass

    def create(self, data: BaseModel):
        values = data.model_dump()
        self.validate(values)
        item = self.model(**values)
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def update(self, item_id: int, data: BaseModel):
        item = self.get(item_id)
        values = data.model_dump(exclude_unset=True, exclude_none=True)
        self.validate(values)
        for field, value in values.items():
            setattr(item, field, value)
        self.db.commit()
        self.db.refresh(item)
        return item

    def delete(self, item_id: int) -> None:
        item = self.get(item_id)
        self.db.delete(item)
        self.db.commit()


class BankAccountService(ContentService):
    model = BankAccount
    entity = "Bank account"
    ordering = (BankAccount.display_order.asc(), BankAccount.id.asc())


class BannerService(ContentService):
    model = Banner
    entity = "Banner"
    ordering = (Banner.order.asc(), Banner.id.asc())

    def validate(self, values: dict) -> None:
        image = values.get("image")
        if image is not None and not image.startswith(("http://", "https://")):
            raise ValidationError("Image must be an uploaded image URL")


class PartnerService(ContentService):
    model = Partner
    entity = "Partner"
    ordering = (Partner.order.asc(), Partner.created_at.desc())


class FooterService:
    """Singleton footer: the newest row wins, defaults when none exists."""

    def __init__(self, db: Session):
        self.db = db

    def _current(self) -> Optional[Footer]:
        return self.db.query(Footer).order_by(Footer.created_at.desc(), Footer.id.desc()).first()

    def get(self) -> FooterRead:
        footer = self._current()
        return FooterRead.model_validate(footer) if footer else FooterRead()

    def upsert(self, data: FooterUpsert) -> tuple[FooterRead, bool]:
        """Returns (footer, created)."""
        values = data.model_dump(exclude_unset=True)
        footer = self._current()
        created = footer is None
        if created:
            footer = Footer(**{k: v for k, v in values.items() if v is not None})
            self.db.add(footer)
        else:
            for field, value in values.items():
                setattr(footer, field, value)
        self.db.commit()
        self.db.refresh(footer)
        return FooterRead.model_validate(footer), created


class GiftSettingService:
    def __init__(self, db: Session):
        self.db = db

    def _current(self) -> Optional[GiftSetting]:
        return self.db.query(GiftSetting).order_by(GiftSetting.created_at.desc(), GiftSetting.id.desc()).first()

    def get(self) -> GiftSettingRead:
        setting = self._current()
        return GiftSettingRead.model_validate(setting) if setting else GiftSettingRead()

    def upsert(self, data: GiftSettingUpsert) -> GiftSettingRead:
        if data.threshold_type not in THRESHOLD_TYPES:
            raise ValidationError('Threshold type must be either "amount" or "count"')
        if data.threshold_value is None or data.threshold_value < 0:
            raise ValidationError("Threshold value must be a positive number")

        setting = self._current()
        if setting is None:
            setting = GiftSetting()
            self.db.add(setting)
        setting.threshold_type = data.threshold_type
        setting.threshold_value = data.threshold_value
        setting.is_active = data.is_active
        self.db.commit()
        self.db.refresh(setting)
        return GiftSettingRead.model_validate(setting)

    def check_eligibility(self, cart_total: Optional[float], item_count: int = 0) -> GiftEligibilityRead:
        if cart_total is None:
            raise ValidationError("cart_total must be provided")
        if cart_total < 0:
            raise ValidationError("cart_total must be a valid positive number")

        setting = self.get()
        current = float(item_count) if setting.threshold_type == "count" else float(cart_total)
        target = float(setting.threshold_value)
        eligible = setting.is_active and current >= target
        return GiftEligibilityRead(
            eligible=eligible,
            threshold_type=setting.threshold_type,
            threshold_value=target,
            remaining=0.0 if eligible or not setting.is_active else round(target - current, 2),
        )
