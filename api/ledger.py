"""
Job Ledger: job and batch status records in Redis.

Each job is a JSON document under `job:status:<jobId>`; each batch is a set
of job ids under `batch:<batchId>`. Every write resets a 24-hour expiry on
the record it touches, so finished jobs disappear a day after their last
update. There is no optimistic locking: concurrent writers race and the last
write wins.
"""
import json
import logging

import redis

from .models import BatchStatus, JobStatus, STATUS_RANK, TERMINAL_STATUSES
from .utils import utc_now

logger = logging.getLogger(__name__)

JOB_TTL_SECONDS = 24 * 60 * 60


class JobLedger:
    job_prefix = "job:status:"
    batch_prefix = "batch:"
    reservation_prefix = "job:enqueued:"

    def __init__(self, client, *, ttl: int = JOB_TTL_SECONDS) -> None:
        self._client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "JobLedger":
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=5, socket_connect_timeout=5)
        return cls(client, **kwargs)

    def close(self) -> None:
        self._client.close()

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.error("Redis health check failed: %s", e)
            return False

    def reserve(self, job_id: str) -> bool:
        """Claim `job_id` for enqueueing. False if it was already claimed."""
        return bool(self._client.set(f"{self.reservation_prefix}{job_id}", utc_now(), nx=True, ex=self.ttl))

    def record_status(self, job_id: str, patch: dict) -> dict:
        """
        Merge `patch` into the job's record, creating it if needed, and return
        what was stored. Patches that would move the status backward (or from
        one terminal status to another) are dropped.
        """
        key = f"{self.job_prefix}{job_id}"
        current = self._load(key) or {}

        patch = {k: getattr(v, "value", v) for k, v in patch.items()}
        old_status = current.get("status")
        new_status = patch.get("status", old_status)
        if old_status and new_status != old_status:
            backward = STATUS_RANK.get(new_status, 0) < STATUS_RANK.get(old_status, 0)
            if backward or old_status in TERMINAL_STATUSES:
                logger.warning(
                    "Ignoring %s -> %s transition for job %s", old_status, new_status, job_id
                )
                return current

        record = {**current, **patch, "jobId": job_id}
        if (
            record.get("status") == JobStatus.PROCESSING
            and old_status == JobStatus.PROCESSING
            and "progress" in patch
        ):
            record["progress"] = max(int(patch["progress"]), int(current.get("progress", 0)))
        record["updatedAt"] = utc_now()

        self._client.set(key, json.dumps(record), ex=self.ttl)

        batch_id = patch.get("batchId")
        if batch_id:
            batch_key = f"{self.batch_prefix}{batch_id}"
            self._client.sadd(batch_key, job_id)
            self._client.expire(batch_key, self.ttl)
        return record

    def get_status(self, job_id: str) -> dict | None:
        return self._load(f"{self.job_prefix}{job_id}")

    def get_batch(self, batch_id: str) -> dict:
        job_ids = self._client.smembers(f"{self.batch_prefix}{batch_id}")

        jobs = []
        for job_id in sorted(job_ids or ()):
            record = self.get_status(job_id)
            if record:
                jobs.append(record)

        counts = {s: 0 for s in JobStatus.values}
        for job in jobs:
            if job.get("status") in counts:
                counts[job["status"]] += 1

        return {
            "batchId": batch_id,
            "status": aggregate_status([j.get("status") for j in jobs]),
            "totalJobs": len(jobs),
            "completed": counts[JobStatus.COMPLETED.value],
            "failed": counts[JobStatus.FAILED.value],
            "processing": counts[JobStatus.PROCESSING.value],
            "queued": counts[JobStatus.QUEUED.value],
            "jobs": jobs,
        }

    def _load(self, key: str) -> dict | None:
        raw = self._client.get(key)
        if not raw:
            return None
        return json.loads(raw)


def aggregate_status(statuses: list) -> str:
    """Failure dominates, then in-flight work, then all-completed; else queued."""
    if any(s == JobStatus.FAILED for s in statuses):
        return BatchStatus.PARTIAL
    if any(s in (JobStatus.PROCESSING, JobStatus.QUEUED) for s in statuses):
        return BatchStatus.PROCESSING
    if statuses and all(s == JobStatus.COMPLETED for s in statuses):
        return BatchStatus.COMPLETED
    return BatchStatus.QUEUED
