"""Background workers for periodic maintenance tasks."""

from imagebatch.workers.reclamation_worker import reclaim_expired, run_reclamation_worker

__all__ = [
    "reclaim_expired",
    "run_reclamation_worker",
]
