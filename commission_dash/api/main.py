"""FastAPI application for commission sync, queries and admin overview."""

from __future__ import annotations

import contextlib
import functools
import logging
from datetime import datetime
from typing import AsyncIterator

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.engine import Engine

from commission_dash.config import Settings
from commission_dash.db.session import create_engine_from_settings
from commission_dash.errors import (
    AuthorizationError,
    CommissionError,
    StorageError,
    UpstreamError,
    ValidationError,
)
from commission_dash.ingest import load_rules
from commission_dash.ingest.models import CommissionRecord, RuleBook
from commission_dash.jobs.sync import build_sync_job
from commission_dash.logic.dashboard import Caller, DashboardLoader
from commission_dash.logic.filters import (
    CommissionSummary,
    bucket_by_day,
    bucket_by_product,
    filter_commissions,
    monthly_series,
    rollup_customers,
    summarize,
)
from commission_dash.logic.queries import AffiliateOverview, CommissionQueryService
from commission_dash.utils.dates import today_utc

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    loader = getattr(app.state, "dashboard_loader", None)
    if loader is not None and loader.sync_job is not None:
        await loader.sync_job.client.close()
    app.state.dashboard_loader = None


app = FastAPI(title="Affiliate Commission API", lifespan=lifespan)

ERROR_STATUS = {
    ValidationError: 400,
    AuthorizationError: 403,
    UpstreamError: 502,
    StorageError: 500,
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncRequest(CamelModel):
    year: int
    month: int
    force_refresh: bool = False
    affiliate_code: str | None = None


class SyncResponse(CamelModel):
    success: bool
    sessions_processed: int
    commissions_found: int
    message: str


class AffiliateDataRequest(CamelModel):
    affiliate_code: str | None = None
    year: int | None = None
    month: int | None = None
    check_key: bool = False


class KeyCheckResponse(CamelModel):
    has_key: bool


class CommissionOut(CamelModel):
    session_id: str
    payment_intent: str | None
    customer_email: str | None
    amount: float
    commission: float
    date: datetime
    product_id: str | None
    product_name: str | None
    affiliate_code: str

    @classmethod
    def from_record(cls, record: CommissionRecord) -> "CommissionOut":
        return cls(
            session_id=record.session_id,
            payment_intent=record.payment_intent,
            customer_email=record.customer_email,
            amount=record.amount_paid,
            commission=record.commission,
            date=record.created_at,
            product_id=record.product_id,
            product_name=record.product_name,
            affiliate_code=record.affiliate_code,
        )


class SummaryOut(CamelModel):
    total_revenue: float
    total_commission: float
    customer_count: int

    @classmethod
    def from_summary(cls, summary: CommissionSummary) -> "SummaryOut":
        return cls(
            total_revenue=summary.total_revenue,
            total_commission=summary.total_commission,
            customer_count=summary.customer_count,
        )


class CommissionsResponse(CamelModel):
    commissions: list[CommissionOut]
    summary: SummaryOut


class OverviewOut(CamelModel):
    email: str
    affiliate_code: str
    commission_rate: float
    total_commission: float
    total_sales: float
    customer_count: int

    @classmethod
    def from_overview(cls, overview: AffiliateOverview) -> "OverviewOut":
        return cls(
            email=overview.email,
            affiliate_code=overview.affiliate_code,
            commission_rate=overview.commission_rate,
            total_commission=overview.total_commission,
            total_sales=overview.total_sales,
            customer_count=overview.customer_count,
        )


class DashboardResponse(CamelModel):
    commissions: list[CommissionOut]
    summary: SummaryOut
    overviews: list[OverviewOut]
    synced: bool


class DayOut(CamelModel):
    day: str
    count: int
    total_amount: float
    total_commission: float
    affiliates: list[str]


class ProductOut(CamelModel):
    product_id: str | None
    name: str
    commission: float
    revenue: float
    count: int
    months_active: int
    avg_commission_per_month: float
    avg_sales_per_month: float


class CustomerOut(CamelModel):
    email: str
    affiliate_code: str
    purchases: int
    revenue: float
    commission: float
    last_purchase: datetime


class MonthOut(CamelModel):
    month: int
    label: str
    commission: float


class ReportResponse(CamelModel):
    summary: SummaryOut
    days: list[DayOut]
    products: list[ProductOut]
    customers: list[CustomerOut]
    monthly: list[MonthOut]


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return Settings.from_env()


@functools.lru_cache(maxsize=4)
def _engine_for(url: str) -> Engine:
    return create_engine_from_settings(Settings(database_url=url))


def get_engine(settings: Settings = Depends(get_settings)) -> Engine:
    return _engine_for(settings.database_url)


def get_rules(settings: Settings = Depends(get_settings)) -> RuleBook:
    return load_rules(settings.rules_path)


def get_queries(engine: Engine = Depends(get_engine)) -> CommissionQueryService:
    return CommissionQueryService(engine)


def get_loader(
    request: Request,
    settings: Settings = Depends(get_settings),
    engine: Engine = Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
) -> DashboardLoader:
    loader = getattr(request.app.state, "dashboard_loader", None)
    if loader is None:
        sync_job = build_sync_job(settings, engine) if settings.has_stripe_key else None
        loader = DashboardLoader(CommissionQueryService(engine), rules, sync_job)
        request.app.state.dashboard_loader = loader
    return loader


def get_caller(
    x_user_email: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    x_affiliate_code: str | None = Header(default=None),
) -> Caller:
    if not x_user_role:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Caller(email=x_user_email, role=x_user_role, affiliate_code=x_affiliate_code)


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise AuthorizationError("Admin access required")
    return caller


@app.exception_handler(CommissionError)
async def commission_error_handler(request: Request, exc: CommissionError) -> JSONResponse:
    status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": str(exc)}, status_code=status)


@app.post("/sync", response_model=SyncResponse)
async def sync(
    payload: SyncRequest,
    caller: Caller = Depends(get_caller),
    settings: Settings = Depends(get_settings),
    engine: Engine = Depends(get_engine),
) -> SyncResponse | JSONResponse:
    affiliate_code = payload.affiliate_code if caller.is_admin else caller.affiliate_code
    if not caller.is_admin and not affiliate_code:
        return JSONResponse({"success": False, "error": "User does not have an affiliate code"}, status_code=400)
    logger.info(
        "Syncing Stripe data for %s-%s, forceRefresh: %s, affiliateCode: %s",
        payload.year,
        payload.month,
        payload.force_refresh,
        affiliate_code,
    )
    try:
        job = build_sync_job(settings, engine)
    except UpstreamError as exc:
        return JSONResponse({"success": False, "error": str(exc)}, status_code=500)
    try:
        result = await job.sync(
            payload.year, payload.month, force_refresh=payload.force_refresh, affiliate_code=affiliate_code
        )
    except CommissionError as exc:
        logger.error("Sync error: %s", exc)
        status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
        return JSONResponse({"success": False, "error": str(exc)}, status_code=status)
    finally:
        await job.client.close()
    return SyncResponse(
        success=True,
        sessions_processed=result.sessions_processed,
        commissions_found=result.commissions_found,
        message=result.message,
    )


@app.post("/affiliate-data")
async def affiliate_data(
    payload: AffiliateDataRequest,
    caller: Caller = Depends(get_caller),
    settings: Settings = Depends(get_settings),
    queries: CommissionQueryService = Depends(get_queries),
) -> CommissionsResponse | KeyCheckResponse:
    if payload.check_key:
        return KeyCheckResponse(has_key=settings.has_stripe_key)
    if not caller.is_admin and payload.affiliate_code and payload.affiliate_code != caller.affiliate_code:
        raise AuthorizationError("Affiliates may only view their own commissions")
    result = queries.get_commissions(payload.affiliate_code, payload.year, payload.month)
    return CommissionsResponse(
        commissions=[CommissionOut.from_record(r) for r in result.commissions],
        summary=SummaryOut.from_summary(result.summary),
    )


@app.get("/admin/affiliates", response_model=list[OverviewOut])
async def admin_affiliates(
    caller: Caller = Depends(require_admin),
    queries: CommissionQueryService = Depends(get_queries),
) -> list[OverviewOut]:
    overviews = queries.get_all_affiliates_overview()
    logger.info("Returning %s affiliate overviews", len(overviews))
    return [OverviewOut.from_overview(o) for o in overviews]


@app.get("/admin/commissions", response_model=CommissionsResponse)
async def admin_commissions(
    year: int = Query(...),
    month: int = Query(...),
    affiliate_code: str | None = Query(default=None, alias="affiliateCode"),
    caller: Caller = Depends(require_admin),
    queries: CommissionQueryService = Depends(get_queries),
    rules: RuleBook = Depends(get_rules),
) -> CommissionsResponse:
    result = queries.get_all_commissions(year, month)
    visible = filter_commissions(result.commissions, rules, affiliate_code)
    return CommissionsResponse(
        commissions=[CommissionOut.from_record(r) for r in visible],
        summary=SummaryOut.from_summary(summarize(visible)),
    )


@app.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    year: int = Query(...),
    month: int = Query(...),
    force_refresh: bool = Query(default=False, alias="forceRefresh"),
    caller: Caller = Depends(get_caller),
    loader: DashboardLoader = Depends(get_loader),
) -> DashboardResponse:
    view = await loader.load(caller, year, month, force_refresh=force_refresh)
    return DashboardResponse(
        commissions=[CommissionOut.from_record(r) for r in view.commissions],
        summary=SummaryOut.from_summary(view.summary),
        overviews=[OverviewOut.from_overview(o) for o in view.overviews],
        synced=view.sync is not None and not view.sync.skipped,
    )


@app.get("/reports", response_model=ReportResponse)
async def reports(
    year: int = Query(...),
    month: int = Query(...),
    affiliate_code: str | None = Query(default=None, alias="affiliateCode"),
    caller: Caller = Depends(get_caller),
    queries: CommissionQueryService = Depends(get_queries),
    rules: RuleBook = Depends(get_rules),
) -> ReportResponse:
    if not caller.is_admin:
        if affiliate_code and affiliate_code != caller.affiliate_code:
            raise AuthorizationError("Affiliates may only view their own commissions")
        affiliate_code = caller.affiliate_code
        if not affiliate_code:
            raise ValidationError("User does not have an affiliate code")
    if affiliate_code:
        result = queries.get_commissions(affiliate_code, year, month)
    else:
        result = queries.get_all_commissions(year, month)
    visible = filter_commissions(result.commissions, rules, affiliate_code)
    chart_year = year or today_utc().year
    return ReportResponse(
        summary=SummaryOut.from_summary(summarize(visible)),
        days=[
            DayOut(
                day=b.day.isoformat(),
                count=b.count,
                total_amount=b.total_amount,
                total_commission=b.total_commission,
                affiliates=sorted(b.affiliates),
            )
            for b in bucket_by_day(visible)
        ],
        products=[
            ProductOut(
                product_id=b.product_id,
                name=b.name,
                commission=b.commission,
                revenue=b.revenue,
                count=b.count,
                months_active=b.months_active,
                avg_commission_per_month=b.avg_commission_per_month,
                avg_sales_per_month=b.avg_sales_per_month,
            )
            for b in bucket_by_product(visible, rules.product_names)
        ],
        customers=[
            CustomerOut(
                email=c.email,
                affiliate_code=c.affiliate_code,
                purchases=c.purchases,
                revenue=c.revenue,
                commission=c.commission,
                last_purchase=c.last_purchase,
            )
            for c in rollup_customers(visible)
        ],
        monthly=[
            MonthOut(month=p.month, label=p.label, commission=p.commission)
            for p in monthly_series(visible, chart_year)
        ],
    )
