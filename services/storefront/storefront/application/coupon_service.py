from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional
import random
import re
import string

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shared.core import get_logger
from storefront.domain.exceptions import CouponCodeExhaustedError, NotFoundError, ValidationError
from storefront.domain.models import Coupon, CouponUsage, utcnow
from .schemas import CouponCreate, CouponStats, CouponUpdate

logger = get_logger(__name__)

CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 100
MANUAL_CODE_RE = re.compile(r"^[A-Z0-9]{3,32}$")

MSG_NOT_FOUND = "Урамшууллын код олдсонгүй"
MSG_INACTIVE = "Урамшууллын код идэвхгүй байна"
MSG_EXPIRED = "Урамшууллын код хугацаа дууссан"
MSG_ALREADY_USED = "Та энэ урамшууллын кодыг аль хэдийн ашигласан байна"
MSG_REDEEMED = "Урамшууллын код аль хэдийн ашиглагдсан байна"


def generate_coupon_code(
    is_taken: Callable[[str], bool],
    rng: Optional[random.Random] = None,
    attempts: int = MAX_CODE_ATTEMPTS,
) -> str:
    """Draw random 6-letter uppercase codes until ``is_taken`` accepts one."""
    rng = rng or random.SystemRandom()
    for _ in range(attempts):
        code = "".join(rng.choice(string.ascii_uppercase) for _ in range(CODE_LENGTH))
        if not is_taken(code):
            return code
    raise CouponCodeExhaustedError(attempts)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def compute_discount(subtotal: float, percentage: float) -> float:
    amount = Decimal(str(subtotal)) * Decimal(str(percentage)) / Decimal(100)
    return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def redemption_key(coupon: Coupon, user_id: str) -> str:
    return f"{coupon.id}:{user_id}" if coupon.is_manual else str(coupon.id)


@dataclass
class CouponValidation:
    coupon: Coupon
    discount_amount: float


class CouponService:
    def __init__(self, db: Session):
        self.db = db

    def _get(self, coupon_id: int) -> Coupon:
        coupon = self.db.get(Coupon, coupon_id)
        if not coupon:
            raise NotFoundError("Coupon", coupon_id, "Coupon not found")
        return coupon

    def _already_redeemed(self, coupon: Coupon, user_id: Optional[str]) -> bool:
        query = self.db.query(CouponUsage.id).filter(CouponUsage.coupon_id == coupon.id)
        if coupon.is_manual:
            # Guests have no identity to redeem against
            if not user_id:
                return False
            query = query.filter(CouponUsage.user_id == user_id)
        return query.first() is not None

    def validate(self, code: Optional[str], subtotal: Optional[float], user_id: Optional[str] = None) -> CouponValidation:
        if not code or not code.strip():
            raise ValidationError("Coupon code is required")
        if subtotal is None or subtotal <= 0:
            raise ValidationError("Subtotal must be greater than 0")

        coupon = self.db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()
        if not coupon:
            raise NotFoundError("Coupon", code, MSG_NOT_FOUND)
        if not coupon.is_active:
            raise ValidationError(MSG_INACTIVE)
        if coupon.expires_at < utcnow():
            raise ValidationError(MSG_EXPIRED)
        if self._already_redeemed(coupon, user_id):
            raise ValidationError(MSG_ALREADY_USED if coupon.is_manual else MSG_REDEEMED)

        return CouponValidation(
            coupon=coupon,
            discount_amount=compute_discount(subtotal, float(coupon.discount_percentage)),
        )

    def record_usage(
        self, coupon_id: int, user_id: str, order_id: Optional[int], discount_amount: float
    ) -> Optional[CouponUsage]:
        """Write the redemption ledger entry; a repeat redemption is a logged no-op."""
        coupon = self.db.get(Coupon, coupon_id)
        if not coupon:
            logger.warning(f"Coupon {coupon_id} not found, skipping coupon usage recording")
            return None
        if self._already_redeemed(coupon, user_id):
            logger.warning(f"Coupon {coupon.code} already redeemed (user {user_id}), usage not recorded")
            return None

        usage = CouponUsage(
            coupon_id=coupon.id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount_amount,
            redemption_key=redemption_key(coupon, user_id),
        )
        self.db.add(usage)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Concurrent redemption of coupon {coupon.code} rejected by unique index")
            return None
        self.db.refresh(usage)
        logger.info(f"Coupon usage recorded for coupon {coupon_id} and order {order_id}")
        return usage

    # Admin

    def _usage_counts(self, coupon_ids: list[int]) -> dict[int, int]:
        if not coupon_ids:
            return {}
        rows = (
            self.db.query(CouponUsage.coupon_id, func.count(CouponUsage.id))
            .filter(CouponUsage.coupon_id.in_(coupon_ids))
            .group_by(CouponUsage.coupon_id)
            .all()
        )
        return {coupon_id: count for coupon_id, count in rows}

    def list(self) -> list[tuple[Coupon, int]]:
        coupons = self.db.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()
        counts = self._usage_counts([c.id for c in coupons])
        return [(c, counts.get(c.id, 0)) for c in coupons]

    def get(self, coupon_id: int) -> tuple[Coupon, int]:
        coupon = self._get(coupon_id)
        return coupon, self._usage_counts([coupon.id]).get(coupon.id, 0)

    @staticmethod
    def _check_percentage(value: float) -> None:
        if value <= 0 or value > 100:
            raise ValidationError("Discount percentage must be between 1 and 100")

    @staticmethod
    def _check_expiry(value: datetime) -> None:
        if value <= utcnow():
            raise ValidationError("Expiration date must be in the future")

    def _code_taken(self, code: str) -> bool:
        return self.db.query(Coupon.id).filter(Coupon.code == code).first() is not None

    def create(self, data: CouponCreate) -> Coupon:
        self._check_percentage(data.discount_percentage)
        self._check_expiry(data.expires_at)

        if data.code:
            code = normalize_code(data.code)
            if not MANUAL_CODE_RE.match(code):
                raise ValidationError("Coupon code must be 3-32 letters or digits")
            if self._code_taken(code):
                raise ValidationError("Coupon code already exists")
            is_manual = True
        else:
            code = generate_coupon_code(self._code_taken)
            is_manual = False

        coupon = Coupon(
            code=code,
            discount_percentage=data.discount_percentage,
            expires_at=data.expires_at,
            is_active=data.is_active,
            is_manual=is_manual,
        )
        self.db.add(coupon)
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def update(self, coupon_id: int, data: CouponUpdate) -> Coupon:
        coupon = self._get(coupon_id)
        if data.discount_percentage is not None:
            self._check_percentage(data.discount_percentage)
            coupon.discount_percentage = data.discount_percentage
        if data.expires_at is not None:
            self._check_expiry(data.expires_at)
            coupon.expires_at = data.expires_at
        if data.is_active is not None:
            coupon.is_active = data.is_active
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def delete(self, coupon_id: int) -> None:
        coupon = self._get(coupon_id)
        self.db.delete(coupon)
        self.db.commit()

    def statistics(self) -> CouponStats:
        now = utcnow()
        total = self.db.query(func.count(Coupon.id)).scalar() or 0
        active = (
            self.db.query(func.count(Coupon.id))
            .filter(Coupon.is_active.is_(True), Coupon.expires_at >= now)
            .scalar() or 0
        )
        expired = self.db.query(func.count(Coupon.id)).filter(Coupon.expires_at < now).scalar() or 0
        inactive = self.db.query(func.count(Coupon.id)).filter(Coupon.is_active.is_(False)).scalar() or 0
        total_usages = self.db.query(func.count(CouponUsage.id)).scalar() or 0
        total_discount = self.db.query(func.coalesce(func.sum(CouponUsage.discount_amount), 0)).scalar()
        return CouponStats(
            total=total,
            active=active,
            expired=expired,
            inactive=inactive,
            total_usages=total_usages,
            total_discount=float(total_discount or 0),
        )
