from dataclasses import dataclass
from typing import Optional
import hashlib

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shared.core import get_logger
from storefront.domain.enums import GUEST_PREFIX, PICKUP_ADDRESS
from storefront.domain.exceptions import NotFoundError, ValidationError
from storefront.domain.models import Address, Order

logger = get_logger(__name__)

DISTRICT_MARKER = "Дүүрэг:"
KHOROO_MARKER = "Хороо:"


@dataclass
class AddressParts:
    city: str
    district: Optional[str]
    khoroo: Optional[str]
    address: str


@dataclass
class AddressCaptureResult:
    success: bool
    address: Optional[Address] = None
    is_duplicate: bool = False
    reason: Optional[str] = None


def is_pickup(shipping_address: Optional[str]) -> bool:
    return not shipping_address or not shipping_address.strip() or shipping_address.strip() == PICKUP_ADDRESS


def parse_shipping_address(shipping_address: Optional[str]) -> AddressParts:
    """Split "<city>, Дүүрэг: <d>, Хороо: <k>, <detail...>" into its parts.

    The first segment is the city; whatever follows the last district/khoroo marker is the
    detail line. Without any detail segment the whole string is kept as the detail.
    """
    if is_pickup(shipping_address):
        return AddressParts(city="", district=None, khoroo=None, address=shipping_address or "")

    parts = [part.strip() for part in shipping_address.split(",")]
    city = parts[0]
    district = khoroo = None
    district_idx = khoroo_idx = -1
    for idx, part in enumerate(parts):
        if district_idx == -1 and part.startswith(DISTRICT_MARKER):
            district_idx = idx
            district = part[len(DISTRICT_MARKER):].strip() or None
        elif khoroo_idx == -1 and part.startswith(KHOROO_MARKER):
            khoroo_idx = idx
            khoroo = part[len(KHOROO_MARKER):].strip() or None

    start = max(district_idx + 1, khoroo_idx + 1, 1)
    if len(parts) > start:
        detail = ", ".join(parts[start:]).strip()
    else:
        detail = shipping_address
    return AddressParts(city=city, district=district, khoroo=khoroo, address=detail)


def compose_shipping_address(parts: AddressParts) -> str:
    segments = []
    if parts.city:
        segments.append(parts.city)
    if parts.district:
        segments.append(f"{DISTRICT_MARKER} {parts.district}")
    if parts.khoroo:
        segments.append(f"{KHOROO_MARKER} {parts.khoroo}")
    if parts.address:
        segments.append(parts.address)
    return ", ".join(segments)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def dedup_key(city: str, district: Optional[str], khoroo: Optional[str], address: str) -> str:
    raw = "\x1f".join([city, district or "", khoroo or "", address])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class AddressService:
    def __init__(self, db: Session):
        self.db = db

    def list(self, user_id: str) -> list[Address]:
        return (
            self.db.query(Address)
            .filter(Address.user_id == user_id)
            .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
            .all()
        )

    def _find_existing(self, user_id: str, key: str) -> Optional[Address]:
        return (
            self.db.query(Address)
            .filter(Address.user_id == user_id, Address.dedup_key == key)
            .first()
        )

    def _unset_default(self, user_id: str) -> None:
        self.db.execute(
            update(Address)
            .where(Address.user_id == user_id, Address.is_default.is_(True))
            .values(is_default=False)
        )

    def save_address(
        self,
        user_id: str,
        city: Optional[str],
        address: Optional[str],
        district: Optional[str] = None,
        khoroo: Optional[str] = None,
        is_default: bool = False,
    ) -> tuple[Address, bool]:
        """Persist an address unless the normalized tuple already exists.

        Returns ``(address, is_duplicate)``.
        """
        city, address = _clean(city), _clean(address)
        district, khoroo = _clean(district), _clean(khoroo)
        if not city or not address:
            raise ValidationError("Хот болон дэлгэрэнгүй хаяг шаардлагатай!")

        key = dedup_key(city, district, khoroo, address)
        existing = self._find_existing(user_id, key)
        if existing:
            return existing, True

        if is_default:
            self._unset_default(user_id)
        record = Address(
            user_id=user_id,
            city=city,
            district=district,
            khoroo=khoroo,
            address=address,
            dedup_key=key,
            is_default=is_default,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent request stored the same tuple first
            self.db.rollback()
            existing = self._find_existing(user_id, key)
            if existing is None:
                raise
            return existing, True
        self.db.refresh(record)
        return record, False

    def save_address_from_order(self, order: Order) -> AddressCaptureResult:
        """Opportunistically remember the delivery address of a registered user's order."""
        if not order.user_id or order.user_id.startswith(GUEST_PREFIX):
            return AddressCaptureResult(success=False, reason="guest_user")
        if is_pickup(order.shipping_address):
            return AddressCaptureResult(success=False, reason="pickup_order")

        parts = parse_shipping_address(order.shipping_address)
        if not parts.city or not parts.address:
            return AddressCaptureResult(success=False, reason="invalid_address_format")

        record, duplicate = self.save_address(
            order.user_id,
            city=parts.city,
            address=parts.address,
            district=parts.district or order.district,
            khoroo=parts.khoroo or order.khoroo,
        )
        return AddressCaptureResult(success=True, address=record, is_duplicate=duplicate)

    def get(self, user_id: str, address_id: int) -> Address:
        record = (
            self.db.query(Address)
            .filter(Address.id == address_id, Address.user_id == user_id)
            .first()
        )
        if not record:
            raise NotFoundError(
                "Хаяг", address_id, "Хаяг олдсонгүй эсвэл танд энэ хаягийг засах эрх байхгүй"
            )
        return record

    def delete(self, user_id: str, address_id: int) -> None:
        record = self.get(user_id, address_id)
        self.db.delete(record)
        self.db.commit()

    def set_default(self, user_id: str, address_id: int) -> Address:
        record = self.get(user_id, address_id)
        self._unset_default(user_id)
        record.is_default = True
        self.db.commit()
        self.db.refresh(record)
        return record
