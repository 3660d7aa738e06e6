"""Storage layer for jobs and batches.

Records live in process memory only and are lost on restart.
"""

from imagebatch.store.job_store import JobStore, ReclaimResult

__all__ = ["JobStore", "ReclaimResult"]
