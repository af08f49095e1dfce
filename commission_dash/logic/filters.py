"""Reporting filters and aggregations over fetched commission records.

Nothing here touches storage: the same fetched list is reshaped for the
summary cards, calendar, product breakdown, customer table and monthly chart.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Mapping, Sequence

import pandas as pd

from commission_dash.ingest.models import CommissionRecord, RuleBook
from commission_dash.utils.dates import as_utc, today_utc
from commission_dash.utils.formatting import product_name

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass(slots=True)
class CommissionSummary:
    total_commission: float = 0.0
    total_revenue: float = 0.0
    customer_count: int = 0


@dataclass(slots=True)
class DayBucket:
    day: date
    count: int = 0
    total_amount: float = 0.0
    total_commission: float = 0.0
    affiliates: set[str] = field(default_factory=set)


@dataclass(slots=True)
class ProductBucket:
    product_id: str | None
    name: str
    commission: float
    revenue: float
    count: int
    months_active: int
    avg_commission_per_month: float
    avg_sales_per_month: float


@dataclass(slots=True)
class CustomerRollup:
    email: str
    affiliate_code: str
    purchases: int
    revenue: float
    commission: float
    last_purchase: datetime


@dataclass(slots=True)
class MonthlyPoint:
    month: int
    label: str
    commission: float


def is_placeholder_email(email: str | None, domains: Sequence[str] = ("example.com",)) -> bool:
    if not email or not email.strip():
        return True
    domain = email.strip().lower().rsplit("@", 1)[-1]
    return any(domain == d or domain.endswith(f".{d}") for d in domains)


def filter_commissions(
    records: Iterable[CommissionRecord],
    rules: RuleBook,
    affiliate_code: str | None = None,
) -> list[CommissionRecord]:
    """Drop test data, non-positive commissions and rows before an affiliate's reporting cutoff."""
    kept: list[CommissionRecord] = []
    for record in records:
        if affiliate_code and record.affiliate_code != affiliate_code:
            continue
        if is_placeholder_email(record.customer_email, rules.placeholder_domains):
            continue
        if record.commission <= 0:
            continue
        cutoff = rules.cutoff_for(record.affiliate_code)
        if cutoff is not None and as_utc(record.created_at) < cutoff:
            continue
        kept.append(record)
    return kept


def summarize(records: Iterable[CommissionRecord]) -> CommissionSummary:
    summary = CommissionSummary()
    customers: set[str] = set()
    for record in records:
        summary.total_commission += record.commission
        summary.total_revenue += record.amount_paid
        if record.customer_email:
            customers.add(record.customer_email)
    summary.customer_count = len(customers)
    return summary


def bucket_by_day(records: Iterable[CommissionRecord]) -> list[DayBucket]:
    buckets: dict[date, DayBucket] = {}
    for record in records:
        day = as_utc(record.created_at).date()
        bucket = buckets.setdefault(day, DayBucket(day=day))
        bucket.count += 1
        bucket.total_amount += record.amount_paid
        bucket.total_commission += record.commission
        bucket.affiliates.add(record.affiliate_code)
    return [buckets[day] for day in sorted(buckets)]


def bucket_by_product(
    records: Iterable[CommissionRecord], product_names: Mapping[str, str] | None = None
) -> list[ProductBucket]:
    names = product_names or {}
    totals: dict[str | None, list[float]] = defaultdict(lambda: [0.0, 0.0, 0])
    months: dict[str | None, set[tuple[int, int]]] = defaultdict(set)
    for record in records:
        entry = totals[record.product_id]
        entry[0] += record.commission
        entry[1] += record.amount_paid
        entry[2] += 1
        created = as_utc(record.created_at)
        months[record.product_id].add((created.year, created.month))

    buckets = []
    for product_id, (commission, revenue, count) in totals.items():
        active = len(months[product_id])
        buckets.append(
            ProductBucket(
                product_id=product_id,
                name=product_name(product_id, names),
                commission=commission,
                revenue=revenue,
                count=int(count),
                months_active=active,
                avg_commission_per_month=commission / active,
                avg_sales_per_month=count / active,
            )
        )
    buckets.sort(key=lambda b: b.commission, reverse=True)
    return buckets


def rollup_customers(records: Iterable[CommissionRecord]) -> list[CustomerRollup]:
    customers: dict[str, CustomerRollup] = {}
    for record in records:
        email = record.customer_email or ""
        created = as_utc(record.created_at)
        customer = customers.get(email)
        if customer is None:
            customers[email] = CustomerRollup(
                email=email,
                affiliate_code=record.affiliate_code,
                purchases=1,
                revenue=record.amount_paid,
                commission=record.commission,
                last_purchase=created,
            )
            continue
        customer.purchases += 1
        customer.revenue += record.amount_paid
        customer.commission += record.commission
        if created > customer.last_purchase:
            customer.last_purchase = created
    return sorted(customers.values(), key=lambda c: c.revenue, reverse=True)


def monthly_series(records: Iterable[CommissionRecord], year: int, today: date | None = None) -> list[MonthlyPoint]:
    """Commission per month of ``year``, up to the current month when ``year`` is this year."""
    today = today or today_utc()
    last_month = today.month if year == today.year else 12
    rows = []
    for record in records:
        created = as_utc(record.created_at)
        if created.year == year:
            rows.append((created.month, record.commission))
    frame = pd.DataFrame(rows, columns=["month", "commission"])
    totals = frame.groupby("month")["commission"].sum().reindex(range(1, last_month + 1), fill_value=0.0)
    return [
        MonthlyPoint(month=int(month), label=MONTH_LABELS[int(month) - 1], commission=float(value))
        for month, value in totals.items()
    ]
