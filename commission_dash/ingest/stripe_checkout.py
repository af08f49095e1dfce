"""Stripe Checkout session listing."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

import httpx

from commission_dash.errors import UpstreamError
from commission_dash.ingest.models import SaleRecord
from commission_dash.utils.dates import from_unix, to_unix
from commission_dash.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

SESSIONS_PATH = "/v1/checkout/sessions"
EXPANSIONS = ("data.discounts", "data.line_items")


class StripeClient:
    def __init__(
        self,
        secret_key: str,
        *,
        api_base: str = "https://api.stripe.com",
        page_size: int = 100,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        if not secret_key:
            raise UpstreamError("Stripe secret key not configured")
        self.api_base = api_base.rstrip("/")
        self.page_size = page_size
        self._session = session or httpx.AsyncClient(timeout=30.0)
        self._headers = {"Authorization": f"Bearer {secret_key}"}
        self._rate_limiter = rate_limiter or RateLimiter()

    async def close(self) -> None:
        await self._session.aclose()

    async def list_sessions(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        """Fetch every checkout session created in [start, end], page by page."""
        url = f"{self.api_base}{SESSIONS_PATH}"
        params: list[tuple[str, str | int]] = [
            ("created[gte]", to_unix(start)),
            ("created[lte]", to_unix(end)),
            ("limit", self.page_size),
        ]
        params.extend(("expand[]", expansion) for expansion in EXPANSIONS)

        sessions: list[dict[str, Any]] = []
        starting_after: str | None = None
        while True:
            page_params = list(params)
            if starting_after:
                page_params.append(("starting_after", starting_after))
            data = await self._get_page(url, page_params)
            items = data.get("data") or []
            sessions.extend(items)
            logger.info("Fetched %s sessions, total so far: %s", len(items), len(sessions))
            if not data.get("has_more") or not items:
                break
            starting_after = items[-1]["id"]
        return sessions

    async def _get_page(self, url: str, params: list[tuple[str, str | int]]) -> dict[str, Any]:
        await self._rate_limiter.wait_for_host(urlparse(url).netloc)
        try:
            response = await self._session.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Stripe request failed: {exc}") from exc
        if response.is_error:
            logger.error("Stripe API error: %s - %s", response.status_code, response.text)
            raise UpstreamError(f"Stripe API error: {response.status_code}", status_code=response.status_code)
        return response.json()


def parse_session(session: dict[str, Any]) -> SaleRecord:
    line_items = ((session.get("line_items") or {}).get("data")) or []
    first_item = line_items[0] if line_items else {}
    price = first_item.get("price") or {}
    product = price.get("product")
    if isinstance(product, dict):
        product = product.get("id")
    details = session.get("customer_details") or {}
    return SaleRecord(
        session_id=session["id"],
        payment_intent=_object_id(session.get("payment_intent")),
        customer_email=details.get("email") or session.get("customer_email") or None,
        amount_paid=(session.get("amount_total") or 0) / 100,
        promo_code_id=extract_promo_code(session),
        product_id=product,
        product_name=first_item.get("description"),
        payment_status=session.get("payment_status") or "unpaid",
        created_at=from_unix(session["created"]),
    )


def extract_promo_code(session: dict[str, Any]) -> str | None:
    for discount in session.get("discounts") or []:
        promo = _object_id(discount.get("promotion_code"))
        if promo:
            return promo
        coupon = _object_id(discount.get("coupon"))
        if coupon:
            return coupon
        if discount.get("id"):
            return discount["id"]
    legacy = session.get("discount") or {}
    return _object_id(legacy.get("promotion_code"))


def _object_id(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("id")
    return value or None
