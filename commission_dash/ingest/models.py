"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

RULE_KINDS = ("rate", "flat")


@dataclass(slots=True)
class SaleRecord:
    session_id: str
    payment_intent: str | None
    customer_email: str | None
    amount_paid: float
    promo_code_id: str | None
    product_id: str | None
    created_at: datetime
    payment_status: str = "paid"
    product_name: str | None = None


@dataclass(slots=True)
class Affiliate:
    affiliate_code: str
    external_promo_id: str | None
    commission_rate: float
    user_ref: int | None = None


@dataclass(slots=True)
class CommissionRecord:
    session_id: str
    payment_intent: str | None
    customer_email: str | None
    amount_paid: float
    commission: float
    affiliate_code: str
    product_id: str | None
    created_at: datetime
    refreshed_at: datetime | None = None
    promo_code_id: str | None = None
    product_name: str | None = None

    def as_row(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "payment_intent": self.payment_intent,
            "customer_email": self.customer_email,
            "amount_paid": self.amount_paid,
            "commission": self.commission,
            "affiliate_code": self.affiliate_code,
            "promo_code_id": self.promo_code_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "created_at": self.created_at,
            "refreshed_at": self.refreshed_at,
        }


@dataclass(slots=True)
class AffiliateRule:
    """Business rule attached to one affiliate code.

    ``rate`` rules pay ``amount_paid * rate`` where ``value`` overrides the
    affiliate's stored rate when set. ``flat`` rules pay ``value`` per sale and,
    when ``product_id`` is set, only on that product. ``match_without_promo``
    claims sales of that product that carry no promo code at all.
    ``effective_from`` hides earlier records from reporting views only.
    """

    affiliate_code: str
    kind: str = "rate"
    value: float | None = None
    product_id: str | None = None
    match_without_promo: bool = False
    promo_ids: tuple[str, ...] = ()
    effective_from: datetime | None = None

    def __post_init__(self) -> None:
        if self.kind not in RULE_KINDS:
            raise ValueError(f"Unknown rule kind {self.kind!r} for {self.affiliate_code}")
        if self.kind == "flat" and self.value is None:
            raise ValueError(f"Flat rule for {self.affiliate_code} needs a value")


@dataclass(slots=True)
class RuleBook:
    rules: Mapping[str, AffiliateRule] = field(default_factory=dict)
    product_names: Mapping[str, str] = field(default_factory=dict)
    placeholder_domains: tuple[str, ...] = ("example.com",)

    def rule_for(self, affiliate_code: str | None) -> AffiliateRule | None:
        if affiliate_code is None:
            return None
        return self.rules.get(affiliate_code)

    def no_promo_rule(self, product_id: str | None) -> AffiliateRule | None:
        if not product_id:
            return None
        for rule in self.rules.values():
            if rule.match_without_promo and rule.product_id == product_id:
                return rule
        return None

    def cutoff_for(self, affiliate_code: str | None) -> datetime | None:
        rule = self.rule_for(affiliate_code)
        return rule.effective_from if rule else None
