# biosynth/workers/job_worker.py
import logging
import threading
from typing import Any, Dict, Optional, Union

from biosynth.errors import ProcessorError
from biosynth.schemas.job import BrokerMessage

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred"


def error_message(error: Exception) -> str:
    """Message stored on a failed job: the raised message, verbatim."""
    return str(error) or UNKNOWN_ERROR_MESSAGE


class LeaseReaper:
    """
    Periodic `expire_stale` on a daemon thread.

    Celery beat covers this when the broker is enabled; with USE_BROKER=false
    jobs run inside the API process, which starts one of these instead.
    """

    def __init__(self, repo, *, lease_seconds: float, interval: float):
        self.repo = repo
        self.lease_seconds = lease_seconds
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def reap_once(self):
        try:
            return self.repo.expire_stale(self.lease_seconds)
        except Exception as e:
            logger.warning("Lease reaper pass failed: %s", e)
            return []

    def _run(self):
        while not self._stop.wait(self.interval):
            self.reap_once()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="lease-reaper", daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
            self._thread = None


class LeaseHeartbeat:
    """Renews a job's lease on a daemon thread while the processor runs."""

    def __init__(self, repo, jobId: int, interval: float):
        self.repo = repo
        self.jobId = jobId
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                if not self.repo.heartbeat(self.jobId):
                    return
            except Exception as e:
                logger.warning("Heartbeat for job %s failed: %s", self.jobId, e)

    def __enter__(self):
        self._thread = threading.Thread(
            target=self._run,
            name=f"lease-{self.jobId}",
            daemon=True,
        )
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
        return False


class JobWorker:
    """
    Executes one delivered job message.

    Claim (pending -> processing), run the matching processor, then write
    the terminal state. Deliveries for jobs that are not pending are
    duplicates and are skipped.
    """

    def __init__(self, *, repo, processors, lease_seconds: float = 900):
        self.repo = repo
        self.processors = processors
        self.lease_seconds = lease_seconds

    def handle(self, message: Union[BrokerMessage, Dict[str, Any]]) -> Any:
        if isinstance(message, BrokerMessage):
            message = message.model_dump(mode="json")

        # jobType stays a raw string here; an unknown type must still
        # claim the record so it ends up failed rather than stuck pending
        jobId = int(message["jobId"])
        jobType = str(message.get("jobType"))
        inputData = message.get("inputData") or {}
        userId = message.get("userId")

        record = self.repo.claim(jobId)
        if record is None:
            current = self.repo.get(jobId)
            state = current.status.value if current else "missing"
            logger.info("↩️ Skipping delivery of job %s (%s): status is %s", jobId, jobType, state)
            return None

        logger.info("🚀 Job %s (%s) started, attempt %d", jobId, jobType, record.attempts)

        try:
            with LeaseHeartbeat(self.repo, jobId, interval=max(self.lease_seconds / 3.0, 1.0)):
                result = self.processors.process(jobType, inputData, userId)
        except Exception as e:
            errorMessage = error_message(e)
            self.repo.fail(jobId, errorMessage)
            logger.error("❌ Job %s (%s) failed: %s", jobId, jobType, errorMessage)
            if isinstance(e, ProcessorError):
                e.jobId, e.jobType = jobId, jobType
                raise
            raise ProcessorError(errorMessage, jobId=jobId, jobType=jobType) from e

        if self.repo.complete(jobId, result) is None:
            # Lease reaper got there first; the record already says failed
            logger.warning("Job %s (%s) finished after its lease expired; result dropped", jobId, jobType)
            return None

        logger.info("✅ Job %s (%s) completed", jobId, jobType)
        return result
