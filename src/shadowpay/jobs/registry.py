"""In-memory registry of recent jobs for status lookups.

Not a datastore: entries live only as long as the process, bounded to the
most recent ``max_size`` jobs.
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Optional

from shadowpay.jobs.models import Job, JobState, Outcome

logger = logging.getLogger(__name__)


class JobRegistry:
    """Bounded map of job id -> status record."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._records: "OrderedDict[str, dict[str, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _evict(self) -> None:
        while len(self._records) > self.max_size:
            self._records.popitem(last=False)

    def record_start(self, job: Job) -> None:
        with self._lock:
            self._records[job.job_id] = {
                "job_id": job.job_id,
                "kind": job.kind.value,
                "state": JobState.RUNNING.value,
                "amount": job.amount,
                "recipient": job.recipient,
                "created_at": self._now(),
                "finished_at": None,
            }
            self._evict()

    def record_outcome(self, outcome: Outcome) -> None:
        with self._lock:
            record = self._records.get(outcome.job_id)
            if record is None:
                return
            record.update(
                state=outcome.state.value,
                finished_at=self._now(),
                duration_ms=round(outcome.duration * 1000),
            )
            if outcome.ok:
                record["reference"] = outcome.result.get("reference")
            else:
                record["error"] = outcome.error
                record["code"] = outcome.error_code.value
            if outcome.state == JobState.TIMED_OUT:
                # TODO: look up the relayer's recent pool signatures to settle timed-out jobs
                record["settlement"] = "unknown"

    def record_abandoned(self, job_id: str) -> None:
        with self._lock:
            record = self._records.get(job_id)
            if record is not None:
                record.update(state="abandoned", finished_at=self._now(), settlement="unknown")

    def get(self, job_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            record = self._records.get(job_id)
            return dict(record) if record is not None else None

    def __len__(self) -> int:
        return len(self._records)
