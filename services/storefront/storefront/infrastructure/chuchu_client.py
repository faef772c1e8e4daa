"""e-chuchu courier API client."""
from typing import Any, Dict, Optional
import httpx

from storefront.core_settings import Settings, get_settings


class ChuchuError(Exception):
    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.payload = payload


class ChuchuClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        self.url = settings.CHUCHU_URL
        self.timeout = settings.CHUCHU_TIMEOUT_SECONDS
        self.transport = transport

    def create_delivery(self, payload: Dict[str, Any]) -> Any:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise ChuchuError(str(e) or e.__class__.__name__) from e
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            raise ChuchuError(f"HTTP {response.status_code}", payload=body)
        try:
            return response.json()
        except ValueError:
            return response.text


def get_chuchu_client() -> ChuchuClient:
    return ChuchuClient(get_settings())
