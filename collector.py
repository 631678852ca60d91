import logging
import signal
import threading
from datetime import datetime
from typing import Callable

from dotenv import load_dotenv

from errors import ConfigurationError, UpstreamError
from models import MAX_ADDITIONAL_ROUTES, utcnow
from services.directions_service import DirectionsClient
from store import JobStore

logger = logging.getLogger(__name__)


class CollectionCycleRunner:
    """Runs one fetch-and-record cycle for one job.

    Nothing raised while fetching or storing routes escapes ``run``: a bad
    tick is logged and the job stays running until the next one.
    """

    def __init__(
        self,
        store: JobStore,
        client: DirectionsClient,
        on_expired: Callable[[str], None],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        self.on_expired = on_expired
        self.clock = clock

    def run(self, job_id: str) -> int:
        """Returns the number of snapshots written."""
        job = self.store.get_job(job_id)
        if not job:
            return 0
        if job.status != "running":
            return 0

        now = self.clock()
        if now > job.expires_at():
            logger.info("Job %s: expired at %s, stopping", job_id, job.expires_at().isoformat())
            self.on_expired(job_id)
            return 0

        additional = min(max(job.additional_routes or 0, 0), MAX_ADDITIONAL_ROUTES)
        try:
            routes = self.client.get_routes(
                job.start_location,
                job.end_location,
                mode=job.navigation_type,
                avoid_highways=bool(job.avoid_highways),
                avoid_tolls=bool(job.avoid_tolls),
                alternatives=additional,
            )
            if not routes:
                logger.warning("Job %s: No routes returned for %s -> %s", job_id, job.start_location, job.end_location)
                return 0

            written = self.store.add_snapshots(job_id, now, routes)
            self.store.update_job(job_id, updated_at=now)
        except ConfigurationError as e:
            logger.error("Job %s: %s", job_id, e)
            return 0
        except UpstreamError as e:
            logger.warning("Job %s: Directions API error (%s): %s", job_id, e.status, e)
            return 0
        except Exception:
            logger.exception("Job %s: collection cycle failed", job_id)
            return 0

        logger.info("Job %s: Collected %d route(s)", job_id, written)
        return written


def main():
    from config import Settings
    from db import make_engine, make_session_factory, Base
    from recovery import RecoveryManager
    from scheduler import SchedulerCore

    load_dotenv()
    s = Settings()
    logging.basicConfig(level=s.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    engine = make_engine(s.DATABASE_URL)
    Base.metadata.create_all(engine)
    store = JobStore(make_session_factory(engine))

    client = DirectionsClient.from_settings(s)
    core = SchedulerCore(store, client, min_interval_seconds=s.MIN_CYCLE_SECONDS)

    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    restored = RecoveryManager(store, core).restore()
    logger.info("Collector running with %d job(s)", len(restored))
    try:
        stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        core.shutdown()


if __name__ == "__main__":
    main()
