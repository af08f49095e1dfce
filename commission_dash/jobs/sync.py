"""Monthly Stripe to commission_sales reconciliation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, TypeVar

from dotenv import load_dotenv
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from commission_dash.config import Settings
from commission_dash.db.session import create_engine_from_settings, upsert
from commission_dash.db.tables import affiliates, commission_sales, sync_state
from commission_dash.errors import StorageError, ValidationError
from commission_dash.ingest import load_rules
from commission_dash.ingest.models import Affiliate, CommissionRecord, RuleBook
from commission_dash.ingest.stripe_checkout import StripeClient, parse_session
from commission_dash.logic.attribution import attribute, build_promo_map, to_commission_record
from commission_dash.utils.dates import month_bounds, now_utc, parse_timestamp
from commission_dash.utils.formatting import format_currency
from commission_dash.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

ADMIN_CODE = "admin"

T = TypeVar("T")

# One registry per event loop, shared by every SyncJob in the process.
_month_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]] = weakref.WeakKeyDictionary()


@dataclass(slots=True)
class SyncResult:
    sessions_processed: int
    commissions_found: int
    skipped: bool = False
    message: str = ""


def sync_key(year: int, month: int) -> str:
    return f"sync_{year}_{month}"


def month_lock(key: str) -> asyncio.Lock:
    """Lock serialising syncs of one month across all jobs on the running loop."""
    locks = _month_locks.setdefault(asyncio.get_running_loop(), {})
    lock = locks.get(key)
    if lock is None:
        lock = locks[key] = asyncio.Lock()
    return lock


class SyncJob:
    """Pulls a month of checkout sessions and upserts the attributable ones.

    A run is all-or-nothing with respect to the upstream fetch: nothing is
    written unless every page was retrieved. Commission rows are keyed by
    session id so repeated runs converge on the same stored state. Rows are
    never deleted.
    """

    def __init__(
        self,
        engine: Engine,
        client: StripeClient,
        rules: RuleBook,
        *,
        stale_after: timedelta = timedelta(hours=1),
        batch_size: int = 50,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.engine = engine
        self.client = client
        self.rules = rules
        self.stale_after = stale_after
        self.batch_size = batch_size
        self._clock = clock

    async def sync(
        self,
        year: int,
        month: int,
        force_refresh: bool = False,
        affiliate_code: str | None = None,
    ) -> SyncResult:
        if not year or not month or not 1 <= month <= 12:
            raise ValidationError(f"Invalid sync month {year}-{month}")
        key = sync_key(year, month)
        async with month_lock(key):
            state = await self._run_db(self._load_state, key)
            if not force_refresh and self._is_fresh(state):
                logger.info("Skipping %s: last synced %s", key, state.get("timestamp"))
                return SyncResult(
                    sessions_processed=state.get("sessionsProcessed", 0),
                    commissions_found=state.get("commissionsFound", 0),
                    skipped=True,
                    message="Data is fresh; sync skipped",
                )

            start, end = month_bounds(year, month)
            logger.info("Syncing Stripe sessions %s to %s (force=%s)", start, end, force_refresh)
            known_affiliates = await self._run_db(self._load_affiliates)
            promo_map = build_promo_map(known_affiliates, self.rules)
            sessions = await self.client.list_sessions(start, end)

            refreshed_at = self._clock()
            records = self._reconcile(sessions, promo_map, refreshed_at)
            scoped = bool(affiliate_code) and affiliate_code != ADMIN_CODE
            if scoped:
                records = [r for r in records if r.affiliate_code == affiliate_code]

            # Only full-month runs may mark the month fresh.
            state_key = None if scoped else key
            await self._run_db(self._persist, state_key, records, len(sessions), refreshed_at)
            logger.info(
                "Sync %s completed: %s sessions, %s commissions worth %s",
                key,
                len(sessions),
                len(records),
                format_currency(sum(r.commission for r in records)),
            )
            return SyncResult(
                sessions_processed=len(sessions),
                commissions_found=len(records),
                message=f"Successfully synced {len(records)} affiliate commissions",
            )

    def _reconcile(
        self, sessions: list[dict[str, Any]], promo_map: dict[str, Affiliate], refreshed_at: datetime
    ) -> list[CommissionRecord]:
        records: list[CommissionRecord] = []
        for raw in sessions:
            try:
                sale = parse_session(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed session %s: %s", raw.get("id"), exc)
                continue
            attribution = attribute(sale, promo_map, self.rules)
            if attribution is None:
                continue
            records.append(to_commission_record(sale, attribution, refreshed_at))
        return records

    def _is_fresh(self, state: dict[str, Any] | None) -> bool:
        if not state or not state.get("timestamp"):
            return False
        last = parse_timestamp(state["timestamp"])
        return self._clock() - last < self.stale_after

    async def _run_db(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, func, *args)
        except SQLAlchemyError as exc:
            raise StorageError(f"Storage failure during sync: {exc}") from exc

    def _load_state(self, key: str) -> dict[str, Any] | None:
        with self.engine.connect() as conn:
            return conn.execute(select(sync_state.c.value).where(sync_state.c.key == key)).scalar_one_or_none()

    def _load_affiliates(self) -> list[Affiliate]:
        query = select(
            affiliates.c.affiliate_code,
            affiliates.c.external_promo_id,
            affiliates.c.commission_rate,
            affiliates.c.user_ref,
        )
        with self.engine.connect() as conn:
            return [Affiliate(**row) for row in conn.execute(query).mappings()]

    def _persist(self, key: str | None, records: list[CommissionRecord], processed: int, refreshed_at: datetime) -> None:
        for start in range(0, len(records), self.batch_size):
            batch = records[start : start + self.batch_size]
            with self.engine.begin() as conn:
                upsert(conn, commission_sales, [r.as_row() for r in batch], key="session_id")
            logger.info("Saved batch %s: %s records", start // self.batch_size + 1, len(batch))
        if key is None:
            return
        value = {
            "sessionsProcessed": processed,
            "commissionsFound": len(records),
            "timestamp": refreshed_at.isoformat(),
        }
        with self.engine.begin() as conn:
            upsert(conn, sync_state, [{"key": key, "value": value, "updated_at": refreshed_at}], key="key")


def build_sync_job(settings: Settings, engine: Engine | None = None) -> SyncJob:
    client = StripeClient(
        settings.stripe_secret_key or "",
        api_base=settings.stripe_api_base,
        page_size=settings.stripe_page_size,
        rate_limiter=RateLimiter(rate=settings.stripe_rate_limit),
    )
    return SyncJob(
        engine or create_engine_from_settings(settings),
        client,
        load_rules(settings.rules_path),
        stale_after=timedelta(seconds=settings.sync_stale_seconds),
        batch_size=settings.sync_batch_size,
    )


async def run_sync(year: int, month: int, force_refresh: bool = False) -> SyncResult:
    load_dotenv()
    job = build_sync_job(Settings.from_env())
    try:
        return await job.sync(year, month, force_refresh=force_refresh)
    finally:
        await job.client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync Stripe checkout sessions for one month")
    parser.add_argument("year", type=int)
    parser.add_argument("month", type=int)
    parser.add_argument("--force", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    result = asyncio.run(run_sync(args.year, args.month, force_refresh=args.force))
    logger.info("%s (%s sessions, %s commissions)", result.message, result.sessions_processed, result.commissions_found)


if __name__ == "__main__":
    main()
