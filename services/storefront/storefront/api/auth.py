from dataclasses import dataclass
from typing import Optional
import jwt
from fastapi import Depends, Request

from shared.core import set_request_context
from storefront.core_settings import get_settings
from storefront.domain.exceptions import AuthenticationError, PermissionDeniedError

BEARER_PREFIX = "Bearer "
LOGIN_REQUIRED = "Нэвтрэх шаардлагатай!"


@dataclass
class CurrentUser:
    id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None


async def get_optional_user(request: Request) -> Optional[CurrentUser]:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        return None
    token_data = decode_access_token(auth_header.split(" ", 1)[1])
    if not token_data:
        return None
    user_id = token_data.get("userId") or token_data.get("id") or token_data.get("sub")
    if not user_id:
        return None
    set_request_context(user_id=str(user_id))
    return CurrentUser(id=str(user_id), role=token_data.get("role"))


def get_current_user(user: Optional[CurrentUser] = Depends(get_optional_user)) -> CurrentUser:
    if user is None:
        raise AuthenticationError(LOGIN_REQUIRED)
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return user
