# biosynth/repos/redis_jobs.py
import itertools
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import redis

from biosynth.errors import JobNotFoundError
from biosynth.schemas.job import JobRecord, JobStatus, JobType

logger = logging.getLogger(__name__)

LEASE_EXPIRED_MESSAGE = "Job lease expired: worker stopped responding"

Mutation = Callable[[JobRecord], Optional[JobRecord]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _epoch(iso: Optional[str]) -> float:
    if not iso:
        return 0.0
    return datetime.fromisoformat(iso).timestamp()


# -------------------------------------------------
# Transitions (shared by both repos)
# -------------------------------------------------
def _claim(record: JobRecord) -> Optional[JobRecord]:
    if record.status != JobStatus.PENDING:
        return None
    now = _now()
    return record.model_copy(update={
        "status": JobStatus.PROCESSING,
        "attempts": record.attempts + 1,
        "heartbeatAt": now,
        "updatedAt": now,
    })


def _heartbeat(record: JobRecord) -> Optional[JobRecord]:
    if record.status != JobStatus.PROCESSING:
        return None
    now = _now()
    return record.model_copy(update={"heartbeatAt": now, "updatedAt": now})


def _complete(resultData: Any) -> Mutation:
    def mutate(record: JobRecord) -> Optional[JobRecord]:
        if record.status != JobStatus.PROCESSING:
            return None
        now = _now()
        return record.model_copy(update={
            "status": JobStatus.COMPLETED,
            "resultData": resultData,
            "errorMessage": None,
            "updatedAt": now,
            "completedAt": now,
        })
    return mutate


def _fail(errorMessage: str, staleBefore: Optional[float] = None) -> Mutation:
    def mutate(record: JobRecord) -> Optional[JobRecord]:
        if record.status != JobStatus.PROCESSING:
            return None
        # Heartbeat renewed since the stale scan
        if staleBefore is not None and _epoch(record.heartbeatAt) >= staleBefore:
            return None
        now = _now()
        return record.model_copy(update={
            "status": JobStatus.FAILED,
            "resultData": None,
            "errorMessage": errorMessage or "An unknown error occurred",
            "updatedAt": now,
            "completedAt": now,
        })
    return mutate


class _JobRepoBase:
    """Operations expressed on top of the storage-specific `_mutate`."""

    def _mutate(self, jobId: int, mutation: Mutation) -> Optional[JobRecord]:
        raise NotImplementedError

    def require(self, jobId: int) -> JobRecord:
        record = self.get(jobId)
        if record is None:
            raise JobNotFoundError(jobId)
        return record

    def claim(self, jobId: int) -> Optional[JobRecord]:
        """pending -> processing. None when the job is missing or not pending."""
        return self._mutate(jobId, _claim)

    def heartbeat(self, jobId: int) -> bool:
        return self._mutate(jobId, _heartbeat) is not None

    def complete(self, jobId: int, resultData: Any) -> Optional[JobRecord]:
        return self._mutate(jobId, _complete(resultData))

    def fail(self, jobId: int, errorMessage: str) -> Optional[JobRecord]:
        return self._mutate(jobId, _fail(errorMessage))

    def _stale_ids(self, cutoff: float) -> List[int]:
        raise NotImplementedError

    def expire_stale(self, leaseSeconds: float) -> List[int]:
        """Fail every processing job whose heartbeat is older than the lease."""
        cutoff = time.time() - leaseSeconds
        expired = []
        for jobId in self._stale_ids(cutoff):
            if self._mutate(jobId, _fail(LEASE_EXPIRED_MESSAGE, staleBefore=cutoff)):
                expired.append(jobId)
        if expired:
            logger.warning("⏰ Expired %d stale job lease(s): %s", len(expired), expired)
        return expired


# -------------------------------------------------
# In-memory repo (LOCAL DEV / TESTS)
# -------------------------------------------------
class InMemoryJobRepo(_JobRepoBase):
    def __init__(self):
        self._jobs: Dict[int, JobRecord] = {}
        self._unpublished = set()
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def create(self, jobType: JobType, inputData: Dict[str, Any], userId: Optional[str] = None) -> JobRecord:
        now = _now()
        with self._lock:
            record = JobRecord(
                id=next(self._ids),
                userId=userId,
                type=jobType,
                status=JobStatus.PENDING,
                inputData=inputData,
                createdAt=now,
                updatedAt=now,
            )
            self._jobs[record.id] = record
        return record

    def get(self, jobId: int) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(jobId)

    def list_for_user(self, userId: Optional[str], limit: int = 50) -> List[JobRecord]:
        with self._lock:
            owned = [job for job in self._jobs.values() if job.userId == userId]
        owned.sort(key=lambda job: job.id, reverse=True)
        return owned[:limit]

    def _mutate(self, jobId: int, mutation: Mutation) -> Optional[JobRecord]:
        with self._lock:
            current = self._jobs.get(jobId)
            if current is None:
                return None
            updated = mutation(current)
            if updated is None:
                return None
            self._jobs[jobId] = updated
            return updated

    def _stale_ids(self, cutoff: float) -> List[int]:
        with self._lock:
            return [
                job.id for job in self._jobs.values()
                if job.status == JobStatus.PROCESSING and _epoch(job.heartbeatAt) < cutoff
            ]

    def mark_unpublished(self, jobId: int):
        with self._lock:
            self._unpublished.add(jobId)

    def clear_unpublished(self, jobId: int):
        with self._lock:
            self._unpublished.discard(jobId)

    def unpublished(self) -> List[int]:
        with self._lock:
            return sorted(self._unpublished)


# -------------------------------------------------
# Redis-backed repo (PRODUCTION)
# -------------------------------------------------
class RedisJobRepo(_JobRepoBase):
    """
    Layout under the key prefix:
    - job:{id}         JSON record
    - job:seq          id sequence (INCR)
    - user:{userId}    sorted set of job ids (score = id, i.e. creation order)
    - processing       sorted set of job ids by heartbeat time
    - unpublished      set of pending job ids whose publish failed
    """

    def __init__(self, client: "redis.Redis", prefix: str = "biosynth:", ttlSeconds: Optional[int] = None):
        self.client = client
        self.prefix = prefix
        self.ttlSeconds = ttlSeconds

    @classmethod
    def from_url(cls, redisUrl: str, prefix: str = "biosynth:", ttlSeconds: Optional[int] = None) -> "RedisJobRepo":
        return cls(redis.from_url(redisUrl, decode_responses=True), prefix=prefix, ttlSeconds=ttlSeconds)

    def _key(self, jobId: int) -> str:
        return f"{self.prefix}job:{jobId}"

    def _user_key(self, userId: Optional[str]) -> str:
        return f"{self.prefix}user:{userId or 'anonymous'}"

    @property
    def _processing_key(self) -> str:
        return f"{self.prefix}processing"

    @property
    def _unpublished_key(self) -> str:
        return f"{self.prefix}unpublished"

    def create(self, jobType: JobType, inputData: Dict[str, Any], userId: Optional[str] = None) -> JobRecord:
        jobId = int(self.client.incr(f"{self.prefix}job:seq"))
        now = _now()
        record = JobRecord(
            id=jobId,
            userId=userId,
            type=jobType,
            status=JobStatus.PENDING,
            inputData=inputData,
            createdAt=now,
            updatedAt=now,
        )
        with self.client.pipeline() as pipe:
            pipe.set(self._key(jobId), record.model_dump_json())
            pipe.zadd(self._user_key(userId), {str(jobId): jobId})
            pipe.execute()
        return record

    def get(self, jobId: int) -> Optional[JobRecord]:
        raw = self.client.get(self._key(jobId))
        return JobRecord.model_validate_json(raw) if raw else None

    def list_for_user(self, userId: Optional[str], limit: int = 50) -> List[JobRecord]:
        ids = self.client.zrevrange(self._user_key(userId), 0, limit - 1)
        if not ids:
            return []
        raws = self.client.mget([self._key(int(jobId)) for jobId in ids])
        return [JobRecord.model_validate_json(raw) for raw in raws if raw]

    def _mutate(self, jobId: int, mutation: Mutation) -> Optional[JobRecord]:
        key = self._key(jobId)
        with self.client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if not raw:
                        pipe.unwatch()
                        return None

                    updated = mutation(JobRecord.model_validate_json(raw))
                    if updated is None:
                        pipe.unwatch()
                        return None

                    pipe.multi()
                    if updated.status.is_terminal and self.ttlSeconds:
                        pipe.set(key, updated.model_dump_json(), ex=self.ttlSeconds)
                    else:
                        pipe.set(key, updated.model_dump_json())

                    if updated.status == JobStatus.PROCESSING:
                        pipe.zadd(self._processing_key, {str(jobId): _epoch(updated.heartbeatAt)})
                    else:
                        pipe.zrem(self._processing_key, str(jobId))
                    pipe.execute()
                    return updated
                except redis.WatchError:
                    # Another writer touched the record; re-read and retry
                    continue

    def _stale_ids(self, cutoff: float) -> List[int]:
        return [int(jobId) for jobId in self.client.zrangebyscore(self._processing_key, "-inf", f"({cutoff}")]

    def mark_unpublished(self, jobId: int):
        self.client.sadd(self._unpublished_key, str(jobId))

    def clear_unpublished(self, jobId: int):
        self.client.srem(self._unpublished_key, str(jobId))

    def unpublished(self) -> List[int]:
        return sorted(int(jobId) for jobId in self.client.smembers(self._unpublished_key))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


# -------------------------------------------------
# Factory
# -------------------------------------------------
def get_job_repo(settings):
    if settings.redis_url:
        return RedisJobRepo.from_url(
            settings.redis_url,
            prefix=settings.redis_prefix,
            ttlSeconds=settings.job_ttl_seconds,
        )
    return InMemoryJobRepo()
