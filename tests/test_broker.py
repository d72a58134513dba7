from __future__ import annotations

import threading

import pytest
from kombu.exceptions import OperationalError

from biosynth.config import Settings
from biosynth.errors import BrokerUnavailableError
from biosynth.repos.redis_jobs import InMemoryJobRepo
from biosynth.schemas.job import BrokerMessage, JobStatus, JobType
from biosynth.workers.broker import JobBroker, backoff_delays
from biosynth.workers.celery import TASK_REAP_STALE, TASK_RUN_JOB, create_celery_app


class FakeConnection:
    def __init__(self, app: "FakeCeleryApp") -> None:
        self.app = app

    def __enter__(self) -> "FakeConnection":
        return self

    def __exit__(self, *exc) -> bool:
        return False

    def ensure_connection(self, max_retries=None) -> None:
        self.app.pings += 1
        if self.app.pings <= self.app.failures:
            raise OperationalError("Error 111 connecting to localhost:6379. Connection refused.")


class FakeCeleryApp:
    def __init__(self, failures: int = 0, publish_error: Exception | None = None) -> None:
        self.failures = failures
        self.pings = 0
        self.publish_error = publish_error
        self.sent: list[tuple[str, dict, dict]] = []

    def connection_for_write(self) -> FakeConnection:
        return FakeConnection(self)

    def send_task(self, name, kwargs=None, **options) -> None:
        if self.publish_error is not None:
            raise self.publish_error
        self.sent.append((name, kwargs, options))


def _broker(app: FakeCeleryApp, sleeps: list[float]) -> JobBroker:
    return JobBroker(app, queue="ai-jobs", retry_pause=5.0, sleep=sleeps.append)


def test_backoff_delays_are_exponential_and_capped() -> None:
    assert backoff_delays() == [0.2, 0.4, 0.8]
    assert backoff_delays(6) == [0.2, 0.4, 0.8, 1.6, 2.0, 2.0]


def test_publish_sends_job_message_by_task_name() -> None:
    app = FakeCeleryApp()
    broker = _broker(app, [])

    broker.publish(BrokerMessage(jobId=7, userId="u1", jobType=JobType.IMPROVE, inputData={"algorithmId": 1}))

    name, kwargs, options = app.sent[0]
    assert name == TASK_RUN_JOB
    assert kwargs == {"jobId": 7, "userId": "u1", "jobType": "improve", "inputData": {"algorithmId": 1}}
    assert options["queue"] == "ai-jobs"
    assert options["retry"] is True
    assert options["retry_policy"]["max_retries"] == 3


def test_publish_failure_becomes_broker_unavailable() -> None:
    broker = _broker(FakeCeleryApp(publish_error=OperationalError("connection refused")), [])

    with pytest.raises(BrokerUnavailableError, match="job 3"):
        broker.publish(BrokerMessage(jobId=3, jobType=JobType.GENERATE))


def test_connect_with_backoff_gives_up_after_bounded_attempts() -> None:
    sleeps: list[float] = []
    app = FakeCeleryApp(failures=100)

    assert _broker(app, sleeps).connect_with_backoff() is False
    assert app.pings == 3
    assert sleeps == [0.2, 0.4]


def test_wait_until_available_pauses_between_rounds() -> None:
    sleeps: list[float] = []
    app = FakeCeleryApp(failures=4)

    assert _broker(app, sleeps).wait_until_available() is True
    # round 1: three failed pings with backoff, then the fixed pause;
    # round 2: the first ping fails, the second succeeds
    assert sleeps == [0.2, 0.4, 5.0, 0.2]
    assert app.pings == 5


def test_wait_until_available_honours_stop() -> None:
    stop = threading.Event()
    stop.set()
    app = FakeCeleryApp(failures=100)

    assert _broker(app, []).wait_until_available(stop=stop) is False
    assert app.pings == 0


def _broker_settings() -> Settings:
    return Settings(use_broker=True, redis_url="redis://localhost:6379/0", worker_concurrency=5)


def test_celery_app_configuration() -> None:
    app = create_celery_app(_broker_settings())

    assert app.conf.task_default_queue == "ai-jobs"
    assert app.conf.worker_concurrency == 5
    assert app.conf.task_acks_late is True
    assert app.conf.broker_connection_max_retries is None
    assert TASK_RUN_JOB not in app.tasks


def test_celery_app_without_redis_url_is_rejected() -> None:
    with pytest.raises(RuntimeError, match="REDIS_URL"):
        create_celery_app(Settings(use_broker=True))


def test_consumer_tasks_run_worker_and_reaper(worker, repo) -> None:
    app = create_celery_app(_broker_settings(), worker=worker, repo=repo)
    job = repo.create(JobType.ANALYZE, {"algorithmId": 5, "analysisType": "sanity"})

    app.tasks[TASK_RUN_JOB].apply(kwargs={
        "jobId": job.id,
        "userId": None,
        "jobType": "analyze",
        "inputData": {"algorithmId": 5, "analysisType": "sanity"},
    })

    assert repo.get(job.id).status == JobStatus.COMPLETED
    assert TASK_REAP_STALE in app.tasks
    assert "reap-stale-jobs" in app.conf.beat_schedule


def test_reaper_task_expires_stale_leases() -> None:
    settings = _broker_settings().model_copy(update={"job_lease_seconds": -1})
    repo = InMemoryJobRepo()
    app = create_celery_app(settings, repo=repo)
    job = repo.create(JobType.GENERATE, {})
    repo.claim(job.id)

    result = app.tasks[TASK_REAP_STALE].apply()

    assert result.get() == [job.id]
    assert repo.get(job.id).status == JobStatus.FAILED
