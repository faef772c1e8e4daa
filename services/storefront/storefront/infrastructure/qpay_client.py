"""QPay merchant API (v2) client."""
from typing import Any, Dict, Optional
from functools import lru_cache
import time
import httpx
import redis
from cachetools import TTLCache

from shared.core import get_logger
from storefront.core_settings import Settings, get_settings

logger = get_logger(__name__)

TOKEN_CACHE_PREFIX = "qpay:token:"
# Tokens are dropped this long before QPay says they expire
EXPIRY_MARGIN_SECONDS = 60


class QPayError(Exception):
    """The gateway was unreachable or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class TokenCache:
    """Bearer token cache: Redis when reachable, in-process TTLCache otherwise."""

    def __init__(self, ttl_seconds: int, redis_url: Optional[str] = None):
        self.ttl_seconds = ttl_seconds
        self.local = TTLCache(maxsize=16, ttl=ttl_seconds)
        self.redis: Optional[redis.Redis] = None
        if redis_url:
            try:
                self.redis = redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=1)
                self.redis.ping()
            except redis.RedisError as e:
                logger.warning(f"Redis unavailable for QPay token cache, using local cache: {e}")
                self.redis = None

    def get(self, key: str) -> Optional[str]:
        if self.redis:
            try:
                value = self.redis.get(TOKEN_CACHE_PREFIX + key)
                if value:
                    return value
            except redis.RedisError as e:
                logger.warning(f"Redis token lookup failed: {e}")
        cached = self.local.get(key)
        if cached and cached[1] > time.monotonic():
            return cached[0]
        return None

    def set(self, key: str, token: str, expires_in: Optional[int] = None) -> None:
        ttl = self.ttl_seconds
        if expires_in:
            ttl = max(min(ttl, int(expires_in) - EXPIRY_MARGIN_SECONDS), 1)
        self.local[key] = (token, time.monotonic() + ttl)
        if self.redis:
            try:
                self.redis.setex(TOKEN_CACHE_PREFIX + key, ttl, token)
            except redis.RedisError as e:
                logger.warning(f"Redis token store failed: {e}")

    def evict(self, key: str) -> None:
        self.local.pop(key, None)
        if self.redis:
            try:
                self.redis.delete(TOKEN_CACHE_PREFIX + key)
            except redis.RedisError as e:
                logger.warning(f"Redis token evict failed: {e}")


@lru_cache
def get_token_cache() -> TokenCache:
    settings = get_settings()
    return TokenCache(settings.QPAY_TOKEN_TTL_SECONDS, settings.REDIS_URL)


class QPayClient:
    def __init__(
        self,
        settings: Settings,
        cache: Optional[TokenCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self.cache = cache if cache is not None else TokenCache(settings.QPAY_TOKEN_TTL_SECONDS)
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.settings.QPAY_BASE_URL,
            timeout=self.settings.QPAY_TIMEOUT_SECONDS,
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return body.get("message") or body.get("error") or str(body)
        return str(body)

    def get_token(self) -> str:
        """Exchange merchant credentials for a bearer token (cached until TTL)."""
        cached = self.cache.get(self.settings.QPAY_LOGIN)
        if cached:
            return cached
        try:
            with self._client() as client:
                response = client.post(
                    "/auth/token",
                    json={},
                    auth=(self.settings.QPAY_LOGIN, self.settings.QPAY_PASSWORD),
                )
        except httpx.HTTPError as e:
            raise QPayError(f"QPay authentication failed: {e}") from e
        if response.status_code >= 400:
            raise QPayError(
                f"QPay authentication failed: {self._error_message(response)}",
                status_code=response.status_code,
            )
        body = response.json()
        token = body.get("access_token")
        if not token:
            raise QPayError("Failed to get QPay token")
        self.cache.set(self.settings.QPAY_LOGIN, token, body.get("expires_in"))
        return token

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = self.get_token()
        try:
            with self._client() as client:
                response = client.request(
                    method, path, json=json, headers={"Authorization": f"Bearer {token}"}
                )
        except httpx.HTTPError as e:
            raise QPayError(f"QPay request {path} failed: {e}") from e
        if response.status_code == 401:
            # Next call re-authenticates
            self.cache.evict(self.settings.QPAY_LOGIN)
        if response.status_code >= 400:
            raise QPayError(
                self._error_message(response),
                status_code=response.status_code,
                payload=response.text,
            )
        return response.json()

    def create_invoice(
        self,
        sender_invoice_no: str,
        description: str,
        amount: float,
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {
            "invoice_code": self.settings.QPAY_INVOICE_CODE,
            "sender_invoice_no": sender_invoice_no,
            "invoice_receiver_code": self.settings.QPAY_RECEIVER_CODE,
            "invoice_description": description,
            "amount": amount,
        }
        if callback_url:
            payload["callback_url"] = callback_url
        data = self._request("POST", "/invoice", json=payload)
        if not data.get("invoice_id"):
            raise QPayError("Failed to create QPay invoice", payload=data)
        return data

    def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/invoice/{invoice_id}")

    def check_payment(self, invoice_id: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/payment/check",
            json={
                "object_type": "INVOICE",
                "object_id": invoice_id,
                "offset": {"page_number": 1, "page_limit": 100},
            },
        )


def get_qpay_client() -> QPayClient:
    return QPayClient(get_settings(), cache=get_token_cache())
