"""Persistence collaborator used by the scheduler and the cycle runner.

Every method opens its own session and commits once, so each call is atomic
on its own and nothing spans two calls.
"""

import json
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.orm import sessionmaker

from models import CollectionJob, RouteSnapshot


class JobStore:
    def __init__(self, session_factory: sessionmaker):
        self.Session = session_factory

    def get_job(self, job_id: str) -> CollectionJob | None:
        with self.Session() as db:
            return db.get(CollectionJob, job_id)

    def list_jobs(self, status: str | None = None) -> list[CollectionJob]:
        with self.Session() as db:
            q = db.query(CollectionJob)
            if status:
                q = q.filter(CollectionJob.status == status)
            return q.order_by(CollectionJob.created_at.desc()).all()

    def list_job_ids_by_status(self, status: str) -> list[str]:
        with self.Session() as db:
            rows = db.query(CollectionJob.id).filter(CollectionJob.status == status).all()
            return [r.id for r in rows]

    def create_job(self, **fields: Any) -> CollectionJob:
        with self.Session() as db:
            job = CollectionJob(**fields)
            db.add(job)
            db.commit()
            return job

    def update_job(self, job_id: str, **fields: Any) -> bool:
        with self.Session() as db:
            job = db.get(CollectionJob, job_id)
            if not job:
                return False
            for key, value in fields.items():
                setattr(job, key, value)
            db.commit()
            return True

    def set_status(self, job_id: str, status: str) -> bool:
        return self.update_job(job_id, status=status)

    def add_snapshots(self, job_id: str, collected_at: datetime, measurements: Iterable) -> int:
        with self.Session() as db:
            count = 0
            for m in measurements:
                db.add(RouteSnapshot(
                    job_id=job_id,
                    route_index=m.route_index,
                    collected_at=collected_at,
                    duration_seconds=m.duration_seconds,
                    distance_meters=m.distance_meters,
                    route_details=json.dumps(m.details(), ensure_ascii=False),
                ))
                count += 1
            db.commit()
            return count

    def list_snapshots(self, job_id: str, since: datetime | None = None) -> list[RouteSnapshot]:
        with self.Session() as db:
            q = db.query(RouteSnapshot).filter(RouteSnapshot.job_id == job_id)
            if since is not None:
                q = q.filter(RouteSnapshot.collected_at >= since)
            return q.order_by(RouteSnapshot.collected_at.asc(), RouteSnapshot.route_index.asc()).all()

    def delete_job(self, job_id: str) -> bool:
        with self.Session() as db:
            job = db.get(CollectionJob, job_id)
            if not job:
                return False
            db.query(RouteSnapshot).filter(RouteSnapshot.job_id == job_id).delete()
            db.delete(job)
            db.commit()
            return True
