"""Read-only usage and billing aggregation over persisted verifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import SQLAlchemyError

from photoverify.db.session import Database
from photoverify.errors import PersistenceError, ValidationError
from photoverify.models import Tenant, Verification
from photoverify.schemas.usage import (
    GroupBy,
    ModelUsage,
    TenantUsage,
    UsagePeriod,
    UsagePoint,
    UsageReport,
    UsageSummary,
)

log = logging.getLogger(__name__)

DEFAULT_RANGE_DAYS = 30


def resolve_range(from_date: Optional[date], to_date: Optional[date], *, today: Optional[date] = None) -> Tuple[date, date]:
    today = today or datetime.now(timezone.utc).date()
    to_d = to_date or today
    from_d = from_date or (to_d - timedelta(days=DEFAULT_RANGE_DAYS))
    if from_d > to_d:
        raise ValidationError("'from' must not be after 'to'")
    return from_d, to_d


def range_bounds(from_date: date, to_date: date) -> Tuple[datetime, datetime]:
    """Half-open UTC interval [from 00:00, to + 1 day 00:00)."""
    start = datetime.combine(from_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end


def bucket_start(ts: datetime, group_by: GroupBy) -> date:
    d = ts.astimezone(timezone.utc).date() if ts.tzinfo else ts.date()
    if group_by == "week":
        return d - timedelta(days=d.weekday())
    if group_by == "month":
        return d.replace(day=1)
    return d


def _passed_sum(column):
    return func.coalesce(func.sum(case((column.is_(True), 1), else_=0)), 0)


def _failed_sum(column):
    return func.coalesce(func.sum(case((column.is_(False), 1), else_=0)), 0)


class UsageAggregator:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def summarize(
        self,
        tenant_id: str,
        from_date: date,
        to_date: date,
        group_by: GroupBy = "day",
    ) -> UsageReport:
        start, end = range_bounds(from_date, to_date)
        in_range = and_(
            Verification.tenant_id == tenant_id,
            Verification.created_at >= start,
            Verification.created_at < end,
        )

        summary_stmt = select(
            func.count(Verification.id),
            func.coalesce(func.sum(Verification.input_tokens), 0),
            func.coalesce(func.sum(Verification.output_tokens), 0),
            func.coalesce(func.sum(Verification.estimated_cost_usd), 0.0),
            func.avg(Verification.processing_time_ms),
            _passed_sum(Verification.passed),
            _failed_sum(Verification.passed),
        ).where(in_range)

        model_stmt = (
            select(
                Verification.model_used,
                func.count(Verification.id),
                func.coalesce(func.sum(Verification.input_tokens), 0),
                func.coalesce(func.sum(Verification.output_tokens), 0),
                func.coalesce(func.sum(Verification.estimated_cost_usd), 0.0),
                func.avg(Verification.processing_time_ms),
            )
            .where(in_range)
            .group_by(Verification.model_used)
        )

        series_stmt = select(
            Verification.created_at,
            Verification.input_tokens,
            Verification.output_tokens,
            Verification.estimated_cost_usd,
            Verification.passed,
        ).where(in_range)

        try:
            async with self._db.session() as session:
                s = (await session.execute(summary_stmt)).one()
                model_rows = (await session.execute(model_stmt)).all()
                series_rows = (await session.execute(series_stmt)).all()
        except SQLAlchemyError as exc:
            log.error("usage query failed", extra={"tenant_id": tenant_id}, exc_info=True)
            raise PersistenceError("Usage query failed") from exc

        total_in, total_out = int(s[1] or 0), int(s[2] or 0)
        summary = UsageSummary(
            total_verifications=int(s[0] or 0),
            total_input_tokens=total_in,
            total_output_tokens=total_out,
            total_tokens=total_in + total_out,
            total_cost_usd=round(float(s[3] or 0.0), 6),
            avg_processing_ms=int(round(float(s[4] or 0))),
            passed_count=int(s[5] or 0),
            failed_count=int(s[6] or 0),
        )

        by_model = [
            ModelUsage(
                model_used=row[0],
                verifications=int(row[1] or 0),
                input_tokens=int(row[2] or 0),
                output_tokens=int(row[3] or 0),
                cost_usd=round(float(row[4] or 0.0), 6),
                avg_ms=int(round(float(row[5] or 0))),
            )
            for row in model_rows
        ]
        by_model.sort(key=lambda m: (-m.cost_usd, m.model_used))

        return UsageReport(
            period=UsagePeriod(from_date=from_date, to_date=to_date, group_by=group_by),
            tenant_id=tenant_id,
            summary=summary,
            by_model=by_model,
            time_series=self._series(series_rows, group_by),
        )

    @staticmethod
    def _series(rows, group_by: GroupBy) -> List[UsagePoint]:
        buckets: Dict[date, Dict[str, float]] = defaultdict(
            lambda: {"verifications": 0, "input": 0, "output": 0, "cost": 0.0, "passed": 0, "failed": 0}
        )
        for created_at, input_tokens, output_tokens, cost, passed in rows:
            b = buckets[bucket_start(created_at, group_by)]
            b["verifications"] += 1
            b["input"] += int(input_tokens or 0)
            b["output"] += int(output_tokens or 0)
            b["cost"] += float(cost or 0.0)
            if passed:
                b["passed"] += 1
            else:
                b["failed"] += 1
        return [
            UsagePoint(
                period=period,
                verifications=int(b["verifications"]),
                input_tokens=int(b["input"]),
                output_tokens=int(b["output"]),
                cost_usd=round(b["cost"], 6),
                passed=int(b["passed"]),
                failed=int(b["failed"]),
            )
            for period, b in sorted(buckets.items())
        ]

    async def all_tenants(self, from_date: date, to_date: date) -> List[TenantUsage]:
        """Admin rollup over active tenants, zero-usage tenants included."""
        start, end = range_bounds(from_date, to_date)
        stmt = (
            select(
                Tenant.id,
                Tenant.name,
                Tenant.slug,
                func.count(Verification.id),
                func.coalesce(func.sum(Verification.input_tokens), 0),
                func.coalesce(func.sum(Verification.output_tokens), 0),
                func.coalesce(func.sum(Verification.estimated_cost_usd), 0.0),
                _passed_sum(Verification.passed),
                _failed_sum(Verification.passed),
            )
            .select_from(Tenant)
            .outerjoin(
                Verification,
                and_(
                    Verification.tenant_id == Tenant.id,
                    Verification.created_at >= start,
                    Verification.created_at < end,
                ),
            )
            .where(Tenant.is_active.is_(True))
            .group_by(Tenant.id, Tenant.name, Tenant.slug)
        )
        try:
            async with self._db.session() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            log.error("all-tenant usage query failed", exc_info=True)
            raise PersistenceError("Usage query failed") from exc

        out = [
            TenantUsage(
                tenant_id=row[0],
                tenant_name=row[1],
                tenant_slug=row[2],
                verifications=int(row[3] or 0),
                input_tokens=int(row[4] or 0),
                output_tokens=int(row[5] or 0),
                cost_usd=round(float(row[6] or 0.0), 6),
                passed=int(row[7] or 0),
                failed=int(row[8] or 0),
            )
            for row in rows
        ]
        out.sort(key=lambda t: (-t.cost_usd, t.tenant_name))
        return out
