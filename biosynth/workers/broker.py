# biosynth/workers/broker.py
import logging
import threading
import time
from typing import Callable, Optional

from kombu.exceptions import OperationalError
from redis.exceptions import RedisError

from biosynth.errors import BrokerUnavailableError
from biosynth.schemas.job import BrokerMessage
from biosynth.workers.celery import PUBLISH_RETRY_POLICY, TASK_RUN_JOB

logger = logging.getLogger(__name__)

CONNECT_ATTEMPTS = 3
CONNECT_BACKOFF_START = 0.2
CONNECT_BACKOFF_MAX = 2.0

_BROKER_ERRORS = (OperationalError, RedisError, OSError)


def backoff_delays(attempts: int = CONNECT_ATTEMPTS,
                   start: float = CONNECT_BACKOFF_START,
                   cap: float = CONNECT_BACKOFF_MAX):
    """0.2, 0.4, 0.8, ... capped at `cap`."""
    return [min(start * (2 ** i), cap) for i in range(attempts)]


class JobBroker:
    """Publishes job messages and manages the broker connection lifecycle."""

    def __init__(self, celery_app, *, queue: str, retry_pause: float = 5.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.app = celery_app
        self.queue = queue
        self.retry_pause = retry_pause
        self._sleep = sleep

    # --------------------------------------------------
    # Publish
    # --------------------------------------------------
    def publish(self, message: BrokerMessage):
        try:
            self.app.send_task(
                TASK_RUN_JOB,
                kwargs=message.model_dump(mode="json"),
                queue=self.queue,
                retry=True,
                retry_policy=PUBLISH_RETRY_POLICY,
            )
        except _BROKER_ERRORS as e:
            raise BrokerUnavailableError(f"Failed to publish job {message.jobId}: {e}") from e

    # --------------------------------------------------
    # Connection lifecycle
    # --------------------------------------------------
    def ping(self) -> bool:
        try:
            with self.app.connection_for_write() as conn:
                conn.ensure_connection(max_retries=1)
            return True
        except _BROKER_ERRORS:
            return False

    def connect_with_backoff(self) -> bool:
        """One bounded round of exponential-backoff connection attempts."""
        for attempt, delay in enumerate(backoff_delays(), start=1):
            if self.ping():
                return True
            if attempt < CONNECT_ATTEMPTS:
                logger.debug("Broker attempt %d/%d failed, retrying in %.1fs", attempt, CONNECT_ATTEMPTS, delay)
                self._sleep(delay)
        return False

    def wait_until_available(self, stop: Optional[threading.Event] = None) -> bool:
        """
        Block until the broker answers. After each failed backoff round
        pause `retry_pause` seconds and start over, indefinitely.

        Returns False only when `stop` is set.
        """
        while stop is None or not stop.is_set():
            if self.connect_with_backoff():
                logger.info("✅ Broker is available")
                return True

            logger.warning(
                "⚠️ Broker unavailable after %d attempts, waiting %.0fs. "
                "Set USE_BROKER=false to process jobs synchronously.",
                CONNECT_ATTEMPTS, self.retry_pause,
            )
            if stop is not None:
                if stop.wait(self.retry_pause):
                    break
            else:
                self._sleep(self.retry_pause)
        return False
