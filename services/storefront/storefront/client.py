"""
Async client for the checkout flow.

Used by the storefront's server-side rendering and by integration tests: create
an order, issue its QPay invoice, then wait for payment with a PaymentPoller.
"""
from typing import Any, Awaitable, Callable, Dict, Optional
import asyncio
import httpx

from shared.core import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_POLL_TIMEOUT = 15 * 60.0


class StorefrontClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "StorefrontClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs) -> Any:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        if response.status_code == 204:
            return None
        return response.json()

    async def quote(self, subtotal: float, discount_amount: float = 0, delivery: bool = True) -> Dict[str, Any]:
        return await self._send(
            "POST", "/order/quote",
            json={"subtotal": subtotal, "discountAmount": discount_amount, "delivery": delivery},
        )

    async def validate_coupon(self, code: str, subtotal: float) -> Dict[str, Any]:
        return await self._send("POST", "/coupons/validate", json={"code": code, "subtotal": subtotal})

    async def create_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        return await self._send("POST", "/order", json=order)

    async def create_invoice(self, order_id: int, amount: float, description: Optional[str] = None) -> Dict[str, Any]:
        payload = {"orderId": order_id, "amount": amount}
        if description:
            payload["description"] = description
        return await self._send("POST", "/qpay/checkout/invoice", json=payload)

    async def check_payment(self, invoice_id: str) -> Dict[str, Any]:
        return await self._send("GET", f"/qpay/check/{invoice_id}")

    def poll_payment(
        self,
        invoice_id: str,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        on_update: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> "PaymentPoller":
        return PaymentPoller(self.check_payment, invoice_id, interval, timeout, on_update)


class PaymentPoller:
    """
    Polls the payment status of one invoice from a single background task.

    Use as an async context manager; leaving the block cancels the task, so
    polling never outlives the page or request that started it::

        async with client.poll_payment(invoice_id) as poller:
            result = await poller.wait()
    """

    def __init__(
        self,
        check: Callable[[str], Awaitable[Dict[str, Any]]],
        invoice_id: str,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        on_update: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ):
        self.check = check
        self.invoice_id = invoice_id
        self.interval = interval
        self.timeout = timeout
        self.on_update = on_update
        self.last_result: Optional[Dict[str, Any]] = None
        self._task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "PaymentPoller":
        self._task = asyncio.create_task(self._run())
        return self

    async def __aexit__(self, *exc) -> None:
        await self.cancel()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> Optional[Dict[str, Any]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            try:
                result = await self.check(self.invoice_id)
            except httpx.HTTPError as e:
                # Transient gateway errors: keep polling until the deadline
                logger.warning(f"Payment check failed for invoice {self.invoice_id}: {e}")
            else:
                self.last_result = result
                if self.on_update:
                    self.on_update(result)
                if result.get("payment", {}).get("is_paid"):
                    return result

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.interval, remaining))

    async def wait(self) -> Optional[Dict[str, Any]]:
        """The paid check result, or None when the deadline passed unpaid."""
        if self._task is None:
            raise RuntimeError("PaymentPoller is not started; use 'async with'")
        return await self._task

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        elif not task.cancelled() and task.exception() is not None:
            logger.warning(f"Payment poller for invoice {self.invoice_id} stopped: {task.exception()}")
