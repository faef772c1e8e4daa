from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.infrastructure.db import get_db
from storefront.application.address_service import AddressService
from storefront.application.schemas import AddressCreate, AddressRead, AddressSaveResult
from .auth import CurrentUser, get_current_user

router = APIRouter(prefix="/user/addresses", tags=["addresses"])


@router.get("", response_model=list[AddressRead])
def list_addresses(db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    return AddressService(db).list(user.id)


@router.post("", response_model=AddressSaveResult)
def save_address(
    payload: AddressCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    address, duplicate = AddressService(db).save_address(
        user.id,
        city=payload.city,
        address=payload.address,
        district=payload.district,
        khoroo=payload.khoroo,
        is_default=payload.is_default,
    )
    message = "Энэ хаяг аль хэдийн бүртгэгдсэн байна" if duplicate else "Хаяг амжилттай хадгалагдлаа"
    return AddressSaveResult(message=message, address=address, is_duplicate=duplicate)


@router.delete("/{address_id}", status_code=204)
def delete_address(address_id: int, db: Session = Depends(get_db), user: CurrentUser = Depends(get_current_user)):
    AddressService(db).delete(user.id, address_id)
    return None


@router.put("/{address_id}/default", response_model=AddressRead)
def set_default_address(
    address_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return AddressService(db).set_default(user.id, address_id)
