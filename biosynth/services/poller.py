# biosynth/services/poller.py
"""
Caller-side wait for a job to finish.

Reads the job record every `interval` seconds until it is completed or
failed, the deadline passes, the caller cancels, or a lookup fails.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Tuple

import requests

from biosynth.schemas.job import JobRecord, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 2.0
DEFAULT_TIMEOUT = 300.0


class PollOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    LOOKUP_FAILED = "lookup_failed"


@dataclass(frozen=True)
class PollResult:
    outcome: PollOutcome
    status: Optional[JobStatus] = None
    result: Any = None
    error: Optional[str] = None
    polls: int = 0


Fetch = Callable[[int], Optional[JobRecord]]


class JobPoller:
    def __init__(self, fetch: Fetch, *, interval: float = DEFAULT_INTERVAL,
                 timeout: Optional[float] = DEFAULT_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetch = fetch
        self.interval = interval
        self.timeout = timeout
        self._clock = clock

    def _check(self, jobId: int, polls: int) -> Tuple[Optional[PollResult], Optional[JobStatus]]:
        """(terminal PollResult or None to keep polling, observed status)."""
        try:
            record = self.fetch(jobId)
        except Exception as e:
            logger.warning("Lookup of job %s failed, stop polling: %s", jobId, e)
            return PollResult(PollOutcome.LOOKUP_FAILED, error=str(e), polls=polls), None

        if record is None:
            return PollResult(PollOutcome.LOOKUP_FAILED, error=f"Job {jobId} not found", polls=polls), None

        if record.status == JobStatus.COMPLETED:
            return PollResult(PollOutcome.COMPLETED, status=record.status, result=record.resultData, polls=polls), record.status
        if record.status == JobStatus.FAILED:
            return PollResult(PollOutcome.FAILED, status=record.status, error=record.errorMessage, polls=polls), record.status
        return None, record.status

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return deadline - self._clock()

    def wait(self, jobId: int, cancel: Optional[threading.Event] = None) -> PollResult:
        cancel = cancel or threading.Event()
        deadline = self._clock() + self.timeout if self.timeout is not None else None
        polls = 0

        while True:
            if cancel.is_set():
                return PollResult(PollOutcome.CANCELLED, polls=polls)

            polls += 1
            outcome, status = self._check(jobId, polls)
            if outcome is not None:
                return outcome

            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                return PollResult(PollOutcome.TIMED_OUT, status=status, polls=polls)

            pause = self.interval if remaining is None else min(self.interval, remaining)
            if cancel.wait(pause):
                return PollResult(PollOutcome.CANCELLED, polls=polls)

    async def wait_async(self, jobId: int, cancel: Optional[asyncio.Event] = None) -> PollResult:
        """
        Same contract on the event loop. `fetch` runs in a thread so a
        blocking store client does not stall the loop.
        """
        cancel = cancel or asyncio.Event()
        deadline = self._clock() + self.timeout if self.timeout is not None else None
        polls = 0

        while True:
            if cancel.is_set():
                return PollResult(PollOutcome.CANCELLED, polls=polls)

            polls += 1
            outcome, status = await asyncio.to_thread(self._check, jobId, polls)
            if outcome is not None:
                return outcome

            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                return PollResult(PollOutcome.TIMED_OUT, status=status, polls=polls)

            pause = self.interval if remaining is None else min(self.interval, remaining)
            try:
                await asyncio.wait_for(cancel.wait(), timeout=pause)
                return PollResult(PollOutcome.CANCELLED, polls=polls)
            except asyncio.TimeoutError:
                pass


class HttpJobFetcher:
    """Fetch callable backed by GET {base_url}/v1/jobs/{id}."""

    def __init__(self, base_url: str, *, session: Optional[requests.Session] = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def __call__(self, jobId: int) -> Optional[JobRecord]:
        resp = self.session.get(f"{self.base_url}/v1/jobs/{jobId}", timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()

        data = resp.json()
        return JobRecord(
            id=data["id"],
            type=data["jobType"],
            status=data["status"],
            inputData=data.get("inputData") or {},
            resultData=data.get("resultData"),
            errorMessage=data.get("errorMessage"),
            createdAt=data["createdAt"],
            updatedAt=data["updatedAt"],
            completedAt=data.get("completedAt"),
        )
