import logging

from scheduler import SchedulerCore
from store import JobStore

logger = logging.getLogger(__name__)


class RecoveryManager:
    """Re-arms timers for jobs still marked running when the process starts."""

    def __init__(self, store: JobStore, scheduler: SchedulerCore):
        self.store = store
        self.scheduler = scheduler

    def restore(self) -> list[str]:
        restored = []
        for job_id in self.store.list_job_ids_by_status("running"):
            try:
                if not self.scheduler.rearm(job_id):
                    logger.info("Job %s is no longer running, not restored", job_id)
                    continue
                restored.append(job_id)
                logger.info("Restored job %s", job_id)
            except Exception:
                logger.exception("Failed to restore job %s", job_id)
        return restored


def restore_running_jobs(store: JobStore, scheduler: SchedulerCore) -> list[str]:
    return RecoveryManager(store, scheduler).restore()
