"""
Calendar lookup over SQLAlchemy (Postgres in production, SQLite in tests)
--------------------------------------------------------------------

Availability for a tenant = technician shifts minus appointments (not
canceled) minus unexpired holds, split into fixed-length slots. Only reads;
booking the chosen slot is left to the host.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from common.models import CalendarResult, CalendarSlot
from common.utils import as_utc, utcnow
from db.models import Appointment, AppointmentStatus, Hold, Tech, TechShift
from db.session import get_sessionmaker

logger = logging.getLogger("booking-engine")


# --------------- Interval utils ---------------
@dataclass
class Interval:
    start: datetime
    end: datetime


def _overlaps(a: Interval, b: Interval) -> bool:
    return a.start < b.end and b.start < a.end


def _subtract(base: Interval, blocks: List[Interval]) -> List[Interval]:
    free = [base]
    for b in sorted(blocks, key=lambda x: x.start):
        next_free: List[Interval] = []
        for f in free:
            if not _overlaps(f, b):
                next_free.append(f)
            else:
                if f.start < b.start:
                    next_free.append(Interval(f.start, b.start))
                if b.end < f.end:
                    next_free.append(Interval(b.end, f.end))
        free = next_free
    return [i for i in free if i.end > i.start]


def _split_into_slots(intervals: List[Interval], duration: timedelta, limit: int) -> List[Interval]:
    out: List[Interval] = []
    for iv in intervals:
        cur = iv.start
        while cur + duration <= iv.end:
            out.append(Interval(cur, cur + duration))
            if len(out) >= limit:
                return out
            cur = cur + duration
    return out


# --------------- Public API ---------------
class CalendarLookupService:
    """CalendarLookup collaborator. Errors become a fallback result, never an exception."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        *,
        duration_min: int = 120,
        horizon_days: int = 7,
        limit: int = 3,
    ):
        self._session_factory = session_factory
        self.duration = timedelta(minutes=duration_min)
        self.horizon = timedelta(days=horizon_days)
        self.limit = limit

    def _session(self) -> AsyncSession:
        factory = self._session_factory or get_sessionmaker()
        return factory()

    async def find_available_slots(
        self,
        tenant_id: Optional[str],
        date_from: Optional[datetime] = None,
        service_type: Optional[str] = None,
    ) -> CalendarResult:
        if not tenant_id:
            return CalendarResult.fallback_result("no_tenant")
        start_h = as_utc(date_from) or utcnow()
        end_h = start_h + self.horizon
        try:
            async with self._session() as db:
                slots = await self._free_slots(db, tenant_id, service_type, start_h, end_h)
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            logger.warning("[Calendar] tenant=%s lookup failed: %s", tenant_id, e)
            return CalendarResult.fallback_result("calendar_error")
        if not slots:
            return CalendarResult(slots=[], fallback=True, reason="no_availability")
        return CalendarResult(slots=slots)

    async def _free_slots(
        self,
        db: AsyncSession,
        tenant_id: str,
        service_type: Optional[str],
        start_h: datetime,
        end_h: datetime,
    ) -> List[CalendarSlot]:
        now = utcnow()
        q = select(Tech.id).where(Tech.tenant_id == tenant_id, Tech.active.is_(True))
        if service_type:
            q = q.where((Tech.service_type == service_type) | Tech.service_type.is_(None))
        tech_ids = list((await db.execute(q)).scalars().all())
        if not tech_ids:
            return []

        shifts = (
            await db.execute(
                select(TechShift).where(
                    TechShift.tech_id.in_(tech_ids),
                    TechShift.end_ts > start_h,
                    TechShift.start_ts < end_h,
                ).order_by(TechShift.start_ts)
            )
        ).scalars().all()
        if not shifts:
            return []

        appts = (
            await db.execute(
                select(Appointment.start_ts, Appointment.end_ts, Appointment.tech_id).where(
                    Appointment.tech_id.in_(tech_ids),
                    Appointment.status != AppointmentStatus.canceled,
                    Appointment.end_ts > start_h,
                    Appointment.start_ts < end_h,
                )
            )
        ).all()
        holds = (
            await db.execute(
                select(Hold.start_ts, Hold.end_ts, Hold.tech_id).where(
                    Hold.tech_id.in_(tech_ids),
                    Hold.expires_at > now,
                    Hold.end_ts > start_h,
                    Hold.start_ts < end_h,
                )
            )
        ).all()

        busy_by_tech: Dict[uuid.UUID, List[Interval]] = {tid: [] for tid in tech_ids}
        for s, e, tid in list(appts) + list(holds):
            busy_by_tech[tid].append(Interval(as_utc(s), as_utc(e)))

        found: List[CalendarSlot] = []
        for tid in tech_ids:
            free: List[Interval] = []
            for sh in (x for x in shifts if x.tech_id == tid):
                base = Interval(max(as_utc(sh.start_ts), start_h), min(as_utc(sh.end_ts), end_h))
                free.extend(_subtract(base, busy_by_tech[tid]))
            for iv in _split_into_slots(sorted(free, key=lambda x: x.start), self.duration, self.limit):
                found.append(CalendarSlot(start=iv.start, end=iv.end, tech_id=str(tid)))

        # earliest openings across all techs
        found.sort(key=lambda s: s.start)
        return found[: self.limit]
