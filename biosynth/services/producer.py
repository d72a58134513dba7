# biosynth/services/producer.py
import logging
from typing import Any, Dict, Optional

import pydantic

from biosynth.errors import BrokerUnavailableError, ProcessorError, ValidationError
from biosynth.schemas.inputs import INPUT_MODELS
from biosynth.schemas.job import BrokerMessage, JobRecord, JobType

logger = logging.getLogger(__name__)


def validate_job(jobType: Any, inputData: Any) -> JobType:
    try:
        kind = JobType(jobType)
    except ValueError:
        allowed = ", ".join(t.value for t in JobType)
        raise ValidationError(f"Invalid job type: {jobType!r} (expected one of: {allowed})")

    if not isinstance(inputData, dict):
        raise ValidationError("inputData must be an object")

    try:
        INPUT_MODELS[kind].model_validate(inputData)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "inputData"
        raise ValidationError(f"Invalid input for {kind.value} job: {field}: {first['msg']}")

    return kind


class JobProducer:
    """
    API-facing entry point: validate, persist pending, publish.

    With no broker (USE_BROKER=false) the job runs inline through the same
    JobWorker the queue consumers use.
    """

    def __init__(self, *, repo, broker=None, worker=None, sync_fallback: bool = True):
        self.repo = repo
        self.broker = broker
        self.worker = worker
        self.sync_fallback = sync_fallback

    def enqueue(self, jobType: Any, inputData: Dict[str, Any], userId: Optional[str] = None) -> int:
        kind = validate_job(jobType, inputData)

        # Persist before publishing so an immediate lookup never 404s
        record = self.repo.create(kind, inputData, userId)
        message = BrokerMessage(jobId=record.id, userId=userId, jobType=kind, inputData=inputData)

        if self.broker is None:
            self._run_inline(message)
            return record.id

        try:
            self.broker.publish(message)
        except BrokerUnavailableError as e:
            self.repo.mark_unpublished(record.id)
            if self.sync_fallback and self.worker is not None:
                logger.warning("⚠️ %s. Processing job %s synchronously.", e, record.id)
                self._run_inline(message)
                self.repo.clear_unpublished(record.id)
            else:
                logger.warning("⚠️ %s. Job %s stays pending until republished.", e, record.id)
            return record.id

        logger.info("📬 Job %s (%s) queued", record.id, kind.value)
        return record.id

    def _run_inline(self, message: BrokerMessage):
        if self.worker is None:
            raise RuntimeError("No broker and no inline worker configured")
        try:
            self.worker.handle(message)
        except ProcessorError as e:
            # Already written to the record as failed; the caller polls for it
            logger.info("Inline job %s failed: %s", message.jobId, e)
        except Exception:
            # The record may still say processing; the lease reaper fails it
            logger.exception("❌ Inline job %s could not be recorded", message.jobId)

    def republish_pending(self) -> int:
        """Re-send every pending job whose earlier publish failed."""
        if self.broker is None:
            return 0

        republished = 0
        for jobId in self.repo.unpublished():
            record: Optional[JobRecord] = self.repo.get(jobId)
            if record is None or record.status.is_terminal or record.attempts > 0:
                self.repo.clear_unpublished(jobId)
                continue

            message = BrokerMessage(
                jobId=record.id,
                userId=record.userId,
                jobType=record.type,
                inputData=record.inputData,
            )
            try:
                self.broker.publish(message)
            except BrokerUnavailableError as e:
                logger.warning("⚠️ Republish stopped at job %s: %s", jobId, e)
                break

            self.repo.clear_unpublished(jobId)
            republished += 1

        if republished:
            logger.info("📬 Republished %d pending job(s)", republished)
        return republished
