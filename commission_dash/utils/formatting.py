"""Display formatting helpers."""

from __future__ import annotations

from typing import Mapping

UNKNOWN_PRODUCT = "Unknown Product"


def format_currency(amount: float | None) -> str:
    if amount is None:
        return "-"
    return f"${amount:,.2f}"


def censor_email(email: str | None) -> str | None:
    if not email or "@" not in email:
        return email
    username, domain = email.split("@", 1)
    if len(username) <= 2:
        return f"{username[:1]}***@{domain}"
    return f"{username[:2]}***{username[-1]}@{domain}"


def product_name(product_id: str | None, names: Mapping[str, str]) -> str:
    if not product_id:
        return UNKNOWN_PRODUCT
    return names.get(product_id, product_id)
