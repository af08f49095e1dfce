from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine

from commission_dash.db.tables import commission_sales
from commission_dash.errors import StorageError, ValidationError
from commission_dash.logic.queries import UNKNOWN_EMAIL, CommissionQueryService, resolve_window

REFRESHED = datetime(2025, 7, 1, tzinfo=timezone.utc)


def row(session_id, affiliate, commission, amount, created, email="buyer@customers.test", product="prod_basic"):
    return {
        "session_id": session_id,
        "payment_intent": None,
        "customer_email": email,
        "amount_paid": amount,
        "commission": commission,
        "affiliate_code": affiliate,
        "promo_code_id": None,
        "product_id": product,
        "product_name": None,
        "created_at": created,
        "refreshed_at": REFRESHED,
    }


@pytest.fixture()
def populated(seeded_engine):
    with seeded_engine.begin() as conn:
        conn.execute(commission_sales.insert(), [
            row("cs_a", "nic", 10.0, 100.0, datetime(2025, 6, 3, tzinfo=timezone.utc), email="alice@customers.test"),
            row("cs_b", "ayoub", 20.0, 149.0, datetime(2025, 6, 4, tzinfo=timezone.utc), email="bob@customers.test"),
            row("cs_c", "nic", 5.0, 50.0, datetime(2025, 5, 31, 23, 59, tzinfo=timezone.utc), email="alice@customers.test"),
            row("cs_d", "nic", 7.5, 75.0, datetime(2025, 7, 1, 0, 0, tzinfo=timezone.utc), email=None),
            row("cs_e", "nic", 2.5, 25.0, datetime(2024, 12, 31, 23, 59, 59, tzinfo=timezone.utc), email="dave@customers.test"),
        ])
    return seeded_engine


def test_month_window_is_inclusive(populated):
    result = CommissionQueryService(populated).get_commissions("nic", 2025, 6)
    assert [r.session_id for r in result.commissions] == ["cs_a"]
    assert result.summary.total_commission == 10.0
    assert result.summary.total_revenue == 100.0
    assert result.summary.customer_count == 1


def test_all_time_equals_union_of_months(populated):
    service = CommissionQueryService(populated)
    everything = {r.session_id for r in service.get_commissions("nic", 0, 0).commissions}
    union = set()
    for year, month in [(2024, 12), (2025, 5), (2025, 6), (2025, 7)]:
        union |= {r.session_id for r in service.get_commissions("nic", year, month).commissions}
    assert everything == union == {"cs_a", "cs_c", "cs_d", "cs_e"}


def test_results_are_newest_first_and_utc(populated):
    records = CommissionQueryService(populated).get_commissions("nic", 0, 0).commissions
    assert [r.session_id for r in records] == ["cs_d", "cs_a", "cs_c", "cs_e"]
    assert all(r.created_at.tzinfo is not None for r in records)


def test_missing_email_is_presented_as_sentinel(populated):
    records = CommissionQueryService(populated).get_commissions("nic", 2025, 7).commissions
    assert records[0].customer_email == UNKNOWN_EMAIL


def test_special_affiliate_reads_stored_attribution(populated):
    result = CommissionQueryService(populated).get_commissions("ayoub", 2025, 6)
    assert [r.session_id for r in result.commissions] == ["cs_b"]
    assert result.commissions[0].commission == 20.0


def test_no_rows_is_not_an_error(populated):
    result = CommissionQueryService(populated).get_commissions("maru", 2025, 6)
    assert result.commissions == []
    assert result.summary.total_commission == 0
    assert result.summary.customer_count == 0


@pytest.mark.parametrize(
    "code, year, month",
    [(None, 2025, 6), ("", 2025, 6), ("nic", None, 6), ("nic", 2025, None), ("nic", 2025, 13), ("nic", 0, 6), ("nic", 2025, 0)],
)
def test_invalid_input_raises_validation_error(populated, code, year, month):
    with pytest.raises(ValidationError):
        CommissionQueryService(populated).get_commissions(code, year, month)


def test_resolve_window_wildcard():
    assert resolve_window(0, 0) is None
    start, end = resolve_window(2025, 2)
    assert (start.day, end.day, end.hour, end.minute) == (1, 28, 23, 59)


def test_storage_failure_is_propagated():
    broken = create_engine("sqlite://", future=True)
    with pytest.raises(StorageError):
        CommissionQueryService(broken).get_commissions("nic", 2025, 6)


def test_get_all_commissions_spans_affiliates(populated):
    result = CommissionQueryService(populated).get_all_commissions(2025, 6)
    assert {r.affiliate_code for r in result.commissions} == {"nic", "ayoub"}
    assert result.summary.total_commission == 30.0


def test_admin_overview_aggregates_per_affiliate(populated):
    overviews = {o.affiliate_code: o for o in CommissionQueryService(populated).get_all_affiliates_overview()}
    assert set(overviews) == {"ayoub", "maru", "nic"}
    nic = overviews["nic"]
    assert nic.email == "nic@whaamkabaam.com"
    assert nic.commission_rate == 0.1
    assert nic.total_commission == pytest.approx(25.0)
    assert nic.total_sales == pytest.approx(250.0)
    assert nic.customer_count == 2
    assert overviews["maru"].total_commission == 0
    assert overviews["maru"].customer_count == 0
