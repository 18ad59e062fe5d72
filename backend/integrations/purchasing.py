"""
Purchasing System Client

Hands purchase-order drafts to the external Purchasing system, which
assigns the authoritative order number and owns the order lifecycle.

Every call is bounded by ``purchasing_timeout_seconds``. Callers treat any
PurchasingUnavailable as "not confirmed yet" and leave the draft pending.

Order intake is not idempotent on its own: each POST carries the draft id
as ``Idempotency-Key`` and only connection failures (the request never
reached Purchasing) are retried."""

from dataclasses import dataclass

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import Settings, get_settings
from db.models import PURCHASING_STATUSES

logger = structlog.get_logger()


class PurchasingUnavailable(Exception):
    """Purchasing could not be reached or refused the draft."""


@dataclass
class PurchasingConfirmation:
    status: str
    order_number: str | None = None


class PurchasingClient:
    """Thin async client for the Purchasing system's order intake."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PurchasingClient":
        settings = settings or get_settings()
        return cls(
            settings.purchasing_api_url,
            token=settings.purchasing_api_token,
            timeout=settings.purchasing_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def submit_draft(self, payload: dict) -> PurchasingConfirmation:
        if not self.configured:
            raise PurchasingUnavailable("Purchasing system URL is not configured")
        try:
            data = await self._post_order(payload, idempotency_key=payload.get("draftId"))
        except (httpx.HTTPError, ValueError) as exc:
            raise PurchasingUnavailable(str(exc) or exc.__class__.__name__) from exc

        status = data.get("status", "pending")
        if status not in PURCHASING_STATUSES:
            logger.warning("purchasing.unknown_status", status=status)
            status = "pending"
        return PurchasingConfirmation(status=status, order_number=data.get("orderNumber"))

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=0.2, max=1),
        reraise=True,
    )
    async def _post_order(self, payload: dict, idempotency_key: str | None = None) -> dict:
        headers = dict(self.headers)
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.post("/purchase-orders", headers=headers, json=payload)
            response.raise_for_status()
            return response.json()
