"""Fetch orchestration for dashboard views."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from commission_dash.errors import StorageError, UpstreamError, ValidationError
from commission_dash.ingest.models import CommissionRecord, RuleBook
from commission_dash.jobs.sync import SyncJob, SyncResult
from commission_dash.logic.filters import CommissionSummary, filter_commissions, summarize
from commission_dash.logic.queries import ALL_TIME, AffiliateOverview, CommissionQueryService
from commission_dash.utils.formatting import censor_email

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Caller:
    email: str | None
    role: str
    affiliate_code: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


@dataclass(slots=True)
class DashboardView:
    commissions: list[CommissionRecord] = field(default_factory=list)
    summary: CommissionSummary = field(default_factory=CommissionSummary)
    overviews: list[AffiliateOverview] = field(default_factory=list)
    sync: SyncResult | None = None


class DashboardLoader:
    """Serves dashboard data, syncing first when the viewed month changes.

    Identical concurrent requests share a single in-flight load keyed by
    ``<affiliate>-<year>-<month>``.
    """

    def __init__(self, queries: CommissionQueryService, rules: RuleBook, sync_job: SyncJob | None = None) -> None:
        self.queries = queries
        self.rules = rules
        self.sync_job = sync_job
        self._inflight: dict[str, asyncio.Task[DashboardView]] = {}
        self._last_month: dict[str, tuple[int, int]] = {}

    async def load(self, caller: Caller, year: int, month: int, force_refresh: bool = False) -> DashboardView:
        if caller.is_admin:
            overviews = await self._in_executor(self.queries.get_all_affiliates_overview)
            return DashboardView(overviews=overviews)
        if not caller.affiliate_code:
            raise ValidationError("User does not have an affiliate code")

        key = f"{caller.affiliate_code}-{year}-{month}"
        logger.info("Dashboard load for %s (%s)", censor_email(caller.email), key)
        task = self._inflight.get(key)
        if task is not None and not force_refresh:
            logger.info("Already fetching %s, joining in-flight request", key)
            return await asyncio.shield(task)

        task = asyncio.create_task(self._fetch(caller.affiliate_code, year, month, force_refresh))
        self._inflight[key] = task
        task.add_done_callback(functools.partial(self._forget, key))
        # A cancelled caller must not cancel the load other callers joined.
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[DashboardView]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _fetch(self, affiliate_code: str, year: int, month: int, force_refresh: bool) -> DashboardView:
        month_changed = self._last_month.get(affiliate_code) != (year, month)
        self._last_month[affiliate_code] = (year, month)

        sync_result = None
        if self.sync_job is not None and (year, month) != ALL_TIME and (force_refresh or month_changed):
            try:
                sync_result = await self.sync_job.sync(year, month, force_refresh=force_refresh)
            except (UpstreamError, StorageError) as exc:
                logger.warning("Sync before load failed for %s-%s: %s", year, month, exc)

        result = await self._in_executor(self.queries.get_commissions, affiliate_code, year, month)
        visible = filter_commissions(result.commissions, self.rules, affiliate_code)
        return DashboardView(commissions=result.commissions, summary=summarize(visible), sync=sync_result)

    async def _in_executor(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)
