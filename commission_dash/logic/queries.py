"""Read-side queries over reconciled commission records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import Select, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from commission_dash.db.tables import affiliates, commission_sales, users
from commission_dash.errors import StorageError, ValidationError
from commission_dash.ingest.models import CommissionRecord
from commission_dash.logic.filters import CommissionSummary, summarize
from commission_dash.utils.dates import as_utc, month_bounds

logger = logging.getLogger(__name__)

UNKNOWN_EMAIL = "unknown@example.com"
ALL_TIME = (0, 0)


@dataclass(slots=True)
class CommissionQueryResult:
    commissions: list[CommissionRecord] = field(default_factory=list)
    summary: CommissionSummary = field(default_factory=CommissionSummary)


@dataclass(slots=True)
class AffiliateOverview:
    email: str
    affiliate_code: str
    commission_rate: float
    total_commission: float
    total_sales: float
    customer_count: int


def resolve_window(year: int | None, month: int | None) -> tuple[datetime, datetime] | None:
    """Inclusive UTC window for a month, or None for the (0, 0) all-time wildcard."""
    if year is None or month is None:
        raise ValidationError("Missing year or month parameter")
    if (year, month) == ALL_TIME:
        return None
    if year <= 0 or not 1 <= month <= 12:
        raise ValidationError(f"Invalid year/month {year}-{month}")
    return month_bounds(year, month)


class CommissionQueryService:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_commissions(self, affiliate_code: str | None, year: int | None, month: int | None) -> CommissionQueryResult:
        if not affiliate_code:
            raise ValidationError("Missing affiliateCode parameter")
        window = resolve_window(year, month)
        query = self._window_query(window).where(commission_sales.c.affiliate_code == affiliate_code)
        records = self._fetch(query)
        logger.info("Returning %s commissions for %s (%s-%s)", len(records), affiliate_code, year, month)
        return CommissionQueryResult(commissions=records, summary=summarize(records))

    def get_all_commissions(self, year: int | None, month: int | None) -> CommissionQueryResult:
        records = self._fetch(self._window_query(resolve_window(year, month)))
        return CommissionQueryResult(commissions=records, summary=summarize(records))

    def get_all_affiliates_overview(self) -> list[AffiliateOverview]:
        sales = commission_sales
        query = (
            select(
                users.c.email,
                affiliates.c.affiliate_code,
                affiliates.c.commission_rate,
                func.coalesce(func.sum(sales.c.commission), 0).label("total_commission"),
                func.coalesce(func.sum(sales.c.amount_paid), 0).label("total_sales"),
                func.count(func.distinct(sales.c.customer_email)).label("customer_count"),
            )
            .select_from(
                affiliates.outerjoin(users, users.c.id == affiliates.c.user_ref).outerjoin(
                    sales, sales.c.affiliate_code == affiliates.c.affiliate_code
                )
            )
            .group_by(affiliates.c.id, users.c.email, affiliates.c.affiliate_code, affiliates.c.commission_rate)
            .order_by(affiliates.c.affiliate_code)
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load affiliate overview: {exc}") from exc
        return [
            AffiliateOverview(
                email=row["email"] or "",
                affiliate_code=row["affiliate_code"],
                commission_rate=float(row["commission_rate"] or 0),
                total_commission=float(row["total_commission"] or 0),
                total_sales=float(row["total_sales"] or 0),
                customer_count=int(row["customer_count"] or 0),
            )
            for row in rows
        ]

    def _window_query(self, window: tuple[datetime, datetime] | None) -> Select:
        query = select(commission_sales).order_by(commission_sales.c.created_at.desc())
        if window is not None:
            start, end = window
            query = query.where(commission_sales.c.created_at.between(start, end))
        return query

    def _fetch(self, query: Select) -> list[CommissionRecord]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load commissions: {exc}") from exc
        return [_to_record(row) for row in rows]


def _to_record(row: Mapping[str, Any]) -> CommissionRecord:
    refreshed_at = row["refreshed_at"]
    return CommissionRecord(
        session_id=row["session_id"],
        payment_intent=row["payment_intent"],
        customer_email=row["customer_email"] or UNKNOWN_EMAIL,
        amount_paid=float(row["amount_paid"]),
        commission=float(row["commission"]),
        affiliate_code=row["affiliate_code"],
        product_id=row["product_id"],
        product_name=row["product_name"],
        promo_code_id=row["promo_code_id"],
        created_at=as_utc(row["created_at"]),
        refreshed_at=as_utc(refreshed_at) if refreshed_at else None,
    )
