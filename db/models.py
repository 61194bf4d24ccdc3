from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Text, Uuid
from sqlalchemy import DateTime as SADateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from common.utils import utcnow


class Base(DeclarativeBase):
    pass


# ---------- Enums ----------
class AppointmentStatus(str, PyEnum):
    scheduled = "scheduled"
    completed = "completed"
    canceled = "canceled"


# ---------- Models ----------
class Tech(Base):
    __tablename__ = "techs"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(Text, index=True)
    full_name: Mapped[str] = mapped_column(Text)
    service_type: Mapped[Optional[str]] = mapped_column(Text)
    timezone: Mapped[str] = mapped_column(Text, default="America/Los_Angeles")
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class TechShift(Base):
    __tablename__ = "tech_shifts"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tech_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("techs.id", ondelete="CASCADE"))
    start_ts: Mapped[datetime] = mapped_column(SADateTime(timezone=True))
    end_ts: Mapped[datetime] = mapped_column(SADateTime(timezone=True))


class Appointment(Base):
    __tablename__ = "appointments"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tech_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("techs.id", ondelete="CASCADE"))
    start_ts: Mapped[datetime] = mapped_column(SADateTime(timezone=True))
    end_ts: Mapped[datetime] = mapped_column(SADateTime(timezone=True))
    status: Mapped[AppointmentStatus] = mapped_column(
        SAEnum(AppointmentStatus, name="appointment_status", native_enum=False),
        default=AppointmentStatus.scheduled,
    )
    customer_name: Mapped[Optional[str]] = mapped_column(Text)
    phone_snapshot: Mapped[Optional[str]] = mapped_column(Text)
    address_snapshot: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(SADateTime(timezone=True), default=utcnow)


class Hold(Base):
    __tablename__ = "holds"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tech_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("techs.id", ondelete="CASCADE"))
    start_ts: Mapped[datetime] = mapped_column(SADateTime(timezone=True))
    end_ts: Mapped[datetime] = mapped_column(SADateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(SADateTime(timezone=True))


Index("ix_tech_shifts_tech_range", TechShift.tech_id, TechShift.start_ts, TechShift.end_ts)
Index("ix_appointments_tech_range", Appointment.tech_id, Appointment.start_ts, Appointment.end_ts)
Index("ix_holds_tech_range", Hold.tech_id, Hold.start_ts, Hold.end_ts)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "Base",
    "Tech",
    "TechShift",
    "Appointment",
    "Hold",
    "AppointmentStatus",
    "init_db",
]
