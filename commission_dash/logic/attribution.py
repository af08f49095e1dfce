"""Attribution of sales to affiliates and commission amounts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping

from commission_dash.ingest.models import Affiliate, AffiliateRule, CommissionRecord, RuleBook, SaleRecord

logger = logging.getLogger(__name__)

NO_PROMO_MARKER = "no_discount"
PAID_STATUS = "paid"


@dataclass(slots=True, frozen=True)
class Attribution:
    affiliate_code: str
    commission: float
    promo_code_id: str


def build_promo_map(affiliates: Iterable[Affiliate], rules: RuleBook) -> dict[str, Affiliate]:
    """Map every promo code id that credits an affiliate to that affiliate."""
    promo_map: dict[str, Affiliate] = {}
    by_code: dict[str, Affiliate] = {}
    for affiliate in affiliates:
        by_code[affiliate.affiliate_code] = affiliate
        if affiliate.external_promo_id:
            promo_map[affiliate.external_promo_id] = affiliate
    for rule in rules.rules.values():
        affiliate = by_code.get(rule.affiliate_code)
        if affiliate is None:
            continue
        for promo_id in rule.promo_ids:
            promo_map.setdefault(promo_id, affiliate)
    return promo_map


def attribute(sale: SaleRecord, promo_map: Mapping[str, Affiliate], rules: RuleBook) -> Attribution | None:
    """Return the affiliate credited for ``sale`` or None when nobody is."""
    if sale.payment_status != PAID_STATUS:
        return None

    if sale.promo_code_id:
        affiliate = promo_map.get(sale.promo_code_id)
        if affiliate is None:
            return None
        rule = rules.rule_for(affiliate.affiliate_code)
        commission = _commission_for(rule, affiliate.commission_rate, sale)
        if commission is None:
            logger.debug(
                "Session %s: product %s not eligible for %s",
                sale.session_id,
                sale.product_id,
                affiliate.affiliate_code,
            )
            return None
        return Attribution(affiliate.affiliate_code, commission, sale.promo_code_id)

    rule = rules.no_promo_rule(sale.product_id)
    if rule is None or rule.value is None:
        return None
    return Attribution(rule.affiliate_code, float(rule.value), NO_PROMO_MARKER)


def _commission_for(rule: AffiliateRule | None, stored_rate: float, sale: SaleRecord) -> float | None:
    if rule is None:
        return sale.amount_paid * stored_rate
    if rule.product_id and sale.product_id != rule.product_id:
        return None
    if rule.kind == "flat":
        return float(rule.value)
    rate = rule.value if rule.value is not None else stored_rate
    return sale.amount_paid * rate


def to_commission_record(sale: SaleRecord, attribution: Attribution, refreshed_at: datetime) -> CommissionRecord:
    return CommissionRecord(
        session_id=sale.session_id,
        payment_intent=sale.payment_intent,
        customer_email=sale.customer_email,
        amount_paid=sale.amount_paid,
        commission=attribution.commission,
        affiliate_code=attribution.affiliate_code,
        product_id=sale.product_id,
        product_name=sale.product_name,
        promo_code_id=attribution.promo_code_id,
        created_at=sale.created_at,
        refreshed_at=refreshed_at,
    )
