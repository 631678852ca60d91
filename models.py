import uuid
from datetime import datetime, timezone, timedelta

from sqlalchemy import String, DateTime, Integer, Boolean, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from db import Base

NAVIGATION_TYPES = ("driving", "walking", "transit")
JOB_STATUSES = ("pending", "running", "paused", "completed")

DEFAULT_CYCLE_MINUTES = 60
DEFAULT_DURATION_DAYS = 7
MAX_ADDITIONAL_ROUTES = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    return str(uuid.uuid4())


class CollectionJob(Base):
    __tablename__ = "collection_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    start_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    end_name: Mapped[str | None] = mapped_column(String(128), nullable=True)

    start_location: Mapped[str] = mapped_column(String(512), nullable=False)
    end_location: Mapped[str] = mapped_column(String(512), nullable=False)

    cycle_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cycle_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_CYCLE_MINUTES)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_DURATION_DAYS)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    navigation_type: Mapped[str] = mapped_column(String(16), nullable=False, default="driving")
    avoid_highways: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    avoid_tolls: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    additional_routes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # see JOB_STATUSES

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def requested_interval_seconds(self) -> int:
        if self.cycle_seconds and self.cycle_seconds > 0:
            return int(self.cycle_seconds)
        return int(self.cycle_minutes or DEFAULT_CYCLE_MINUTES) * 60

    def effective_interval_seconds(self, floor_seconds: int) -> int:
        return max(self.requested_interval_seconds(), int(floor_seconds))

    def expires_at(self) -> datetime:
        if self.end_time is not None:
            return ensure_utc(self.end_time)
        days = self.duration_days or DEFAULT_DURATION_DAYS
        return ensure_utc(self.created_at) + timedelta(days=days)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "start_name": self.start_name,
            "end_name": self.end_name,
            "start_location": self.start_location,
            "end_location": self.end_location,
            "cycle_seconds": self.cycle_seconds,
            "cycle_minutes": self.cycle_minutes,
            "duration_days": self.duration_days,
            "end_time": _iso(self.end_time),
            "navigation_type": self.navigation_type,
            "avoid_highways": self.avoid_highways,
            "avoid_tolls": self.avoid_tolls,
            "additional_routes": self.additional_routes,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class RouteSnapshot(Base):
    __tablename__ = "route_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(String(36), ForeignKey("collection_jobs.id"), nullable=False)
    route_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0 = primary
    collected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    distance_meters: Mapped[int | None] = mapped_column(Integer, nullable=True)

    route_details: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON: summary, steps, points

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "route_index": self.route_index,
            "collected_at": _iso(self.collected_at),
            "duration_seconds": self.duration_seconds,
            "distance_meters": self.distance_meters,
            "route_details": self.route_details,
        }


def _iso(value: datetime | None) -> str | None:
    value = ensure_utc(value)
    return value.isoformat() if value is not None else None


Index("ix_route_snapshots_job_collected", RouteSnapshot.job_id, RouteSnapshot.collected_at)
