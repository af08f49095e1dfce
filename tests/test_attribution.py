from datetime import datetime, timezone

import pytest

from commission_dash.ingest.models import Affiliate, SaleRecord
from commission_dash.logic.attribution import NO_PROMO_MARKER, attribute, build_promo_map, to_commission_record

from conftest import BASIC, ENTERPRISE, NIC_PROMO

CREATED = datetime(2025, 6, 10, tzinfo=timezone.utc)

AFFILIATES = [
    Affiliate("nic", NIC_PROMO, 0.1),
    Affiliate("maru", "promo_maru", 0.2),
    Affiliate("ayoub", None, 0.2),
]


def sale(amount: float, promo: str | None, product: str | None = BASIC, status: str = "paid") -> SaleRecord:
    return SaleRecord(
        session_id="cs_1",
        payment_intent="pi_1",
        customer_email="buyer@customers.test",
        amount_paid=amount,
        promo_code_id=promo,
        product_id=product,
        created_at=CREATED,
        payment_status=status,
    )


def test_promo_code_uses_affiliate_rate(rules):
    promo_map = build_promo_map(AFFILIATES, rules)
    result = attribute(sale(100.0, NIC_PROMO), promo_map, rules)
    assert result is not None
    assert result.affiliate_code == "nic"
    assert result.commission == pytest.approx(10.0, abs=1e-6)


@pytest.mark.parametrize("amount", [0.5, 33.33, 116.1, 999.99])
def test_rate_commission_is_unrounded(rules, amount):
    promo_map = build_promo_map(AFFILIATES, rules)
    result = attribute(sale(amount, "promo_maru"), promo_map, rules)
    assert abs(result.commission - amount * 0.2) < 1e-6


@pytest.mark.parametrize("amount", [149.0, 1.0, 500.0])
def test_enterprise_sale_without_promo_pays_flat(rules, amount):
    result = attribute(sale(amount, None, ENTERPRISE), build_promo_map(AFFILIATES, rules), rules)
    assert result.affiliate_code == "ayoub"
    assert result.commission == 20.0
    assert result.promo_code_id == NO_PROMO_MARKER


def test_no_promo_other_product_is_excluded(rules):
    assert attribute(sale(149.0, None, BASIC), build_promo_map(AFFILIATES, rules), rules) is None


def test_unknown_promo_is_excluded(rules):
    assert attribute(sale(100.0, "promo_unknown"), build_promo_map(AFFILIATES, rules), rules) is None


def test_unpaid_session_is_excluded(rules):
    result = attribute(sale(100.0, NIC_PROMO, status="unpaid"), build_promo_map(AFFILIATES, rules), rules)
    assert result is None


def test_flat_rule_promo_ids_only_count_on_rule_product(rules):
    promo_map = build_promo_map(AFFILIATES, rules)
    assert promo_map["promo_ayoub"].affiliate_code == "ayoub"
    assert attribute(sale(149.0, "promo_ayoub", ENTERPRISE), promo_map, rules).commission == 20.0
    assert attribute(sale(149.0, "promo_ayoub", BASIC), promo_map, rules) is None


def test_to_commission_record_copies_sale(rules):
    refreshed = datetime(2025, 6, 11, tzinfo=timezone.utc)
    item = sale(100.0, NIC_PROMO)
    record = to_commission_record(item, attribute(item, build_promo_map(AFFILIATES, rules), rules), refreshed)
    assert record.session_id == "cs_1"
    assert record.affiliate_code == "nic"
    assert record.refreshed_at == refreshed
    assert record.created_at == CREATED
