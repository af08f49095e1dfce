from datetime import date, datetime, timezone

import pytest

from commission_dash.ingest.models import CommissionRecord
from commission_dash.logic import filters

from conftest import BASIC, ENTERPRISE


def record(session_id, *, affiliate="nic", commission=10.0, amount=100.0, created=None, email="alice@customers.test", product=BASIC):
    return CommissionRecord(
        session_id=session_id,
        payment_intent=None,
        customer_email=email,
        amount_paid=amount,
        commission=commission,
        affiliate_code=affiliate,
        product_id=product,
        created_at=created or datetime(2025, 6, 10, 15, tzinfo=timezone.utc),
    )


def test_filter_drops_test_data_and_non_positive(rules):
    records = [
        record("keep"),
        record("no-email", email=None),
        record("blank", email="  "),
        record("sentinel", email="unknown@example.com"),
        record("example", email="someone@example.com"),
        record("zero", commission=0.0),
        record("negative", commission=-5.0),
    ]
    kept = filters.filter_commissions(records, rules)
    assert [r.session_id for r in kept] == ["keep"]
    assert len(records) == 7


def test_cutoff_only_applies_to_its_affiliate(rules):
    before = datetime(2025, 5, 19, 23, 59, tzinfo=timezone.utc)
    after = datetime(2025, 5, 20, 0, 0, tzinfo=timezone.utc)
    records = [
        record("ayoub-before", affiliate="ayoub", commission=20.0, created=before, product=ENTERPRISE),
        record("ayoub-after", affiliate="ayoub", commission=20.0, created=after, product=ENTERPRISE),
        record("nic-before", created=before),
    ]
    kept = filters.filter_commissions(records, rules)
    assert [r.session_id for r in kept] == ["ayoub-after", "nic-before"]


def test_filter_by_affiliate(rules):
    records = [record("a"), record("b", affiliate="maru")]
    assert [r.session_id for r in filters.filter_commissions(records, rules, "maru")] == ["b"]


def test_summarize_sums_without_rounding():
    records = [record("a", commission=0.1, amount=1.0), record("b", commission=0.2, amount=2.0, email="bob@customers.test")]
    summary = filters.summarize(records)
    assert summary.total_commission == pytest.approx(0.3)
    assert summary.total_revenue == 3.0
    assert summary.customer_count == 2


def test_summarize_empty():
    assert filters.summarize([]) == filters.CommissionSummary()


def test_example_scenario_totals(rules):
    records = [
        record("A", commission=10.0, amount=100.0, email="alice@customers.test"),
        record("B", affiliate="ayoub", commission=20.0, amount=149.0, email="bob@customers.test", product=ENTERPRISE),
    ]
    summary = filters.summarize(filters.filter_commissions(records, rules))
    assert summary.total_commission == 30.0
    assert summary.customer_count == 2


def test_bucket_by_day():
    records = [
        record("a", created=datetime(2025, 6, 1, 1, tzinfo=timezone.utc)),
        record("b", affiliate="maru", commission=5.0, amount=50.0, created=datetime(2025, 6, 1, 22, tzinfo=timezone.utc)),
        record("c", created=datetime(2025, 6, 3, tzinfo=timezone.utc)),
    ]
    buckets = filters.bucket_by_day(records)
    assert [b.day for b in buckets] == [date(2025, 6, 1), date(2025, 6, 3)]
    first = buckets[0]
    assert (first.count, first.total_amount, first.total_commission) == (2, 150.0, 15.0)
    assert first.affiliates == {"nic", "maru"}


def test_bucket_by_product(rules):
    records = [
        record("a", product=ENTERPRISE, commission=20.0, created=datetime(2025, 5, 25, tzinfo=timezone.utc)),
        record("b", product=ENTERPRISE, commission=20.0, created=datetime(2025, 6, 2, tzinfo=timezone.utc)),
        record("c", product=ENTERPRISE, commission=20.0, created=datetime(2025, 6, 9, tzinfo=timezone.utc)),
        record("d", product=None, commission=3.0),
    ]
    buckets = filters.bucket_by_product(records, rules.product_names)
    enterprise = buckets[0]
    assert enterprise.name == "Enterprise"
    assert enterprise.count == 3
    assert enterprise.months_active == 2
    assert enterprise.avg_commission_per_month == 30.0
    assert enterprise.avg_sales_per_month == 1.5
    assert buckets[1].name == "Unknown Product"


def test_rollup_customers_tracks_latest_purchase():
    latest = datetime(2025, 6, 20, tzinfo=timezone.utc)
    records = [
        record("a", created=datetime(2025, 6, 1, tzinfo=timezone.utc)),
        record("b", created=latest),
        record("c", email="bob@customers.test", amount=500.0, commission=50.0),
    ]
    customers = filters.rollup_customers(records)
    assert [c.email for c in customers] == ["bob@customers.test", "alice@customers.test"]
    alice = customers[1]
    assert alice.purchases == 2
    assert alice.revenue == 200.0
    assert alice.commission == 20.0
    assert alice.last_purchase == latest


def test_monthly_series_stops_at_current_month():
    records = [
        record("a", commission=10.0, created=datetime(2025, 1, 5, tzinfo=timezone.utc)),
        record("b", commission=5.0, created=datetime(2025, 3, 5, tzinfo=timezone.utc)),
        record("c", commission=5.0, created=datetime(2025, 3, 6, tzinfo=timezone.utc)),
        record("d", commission=99.0, created=datetime(2024, 3, 6, tzinfo=timezone.utc)),
    ]
    series = filters.monthly_series(records, 2025, today=date(2025, 4, 15))
    assert [p.label for p in series] == ["Jan", "Feb", "Mar", "Apr"]
    assert [p.commission for p in series] == [10.0, 0.0, 10.0, 0.0]


def test_monthly_series_past_year_has_twelve_months():
    series = filters.monthly_series([], 2024, today=date(2025, 4, 15))
    assert len(series) == 12
    assert all(p.commission == 0.0 for p in series)


def test_is_placeholder_email():
    assert filters.is_placeholder_email(None)
    assert filters.is_placeholder_email("x@mail.example.com")
    assert not filters.is_placeholder_email("x@examples.org")
