from __future__ import annotations

import pytest

from biosynth.errors import BrokerUnavailableError, ValidationError
from biosynth.repos.redis_jobs import InMemoryJobRepo
from biosynth.schemas.job import BrokerMessage, JobStatus, JobType
from biosynth.services.processors import ProcessorRegistry
from biosynth.services.producer import JobProducer, validate_job
from biosynth.workers.job_worker import JobWorker, LeaseReaper

from conftest import StubAIClient

ANALYZE_INPUT = {"algorithmId": 5, "analysisType": "sanity"}


class FakeBroker:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.published: list[BrokerMessage] = []

    def publish(self, message: BrokerMessage) -> None:
        if not self.available:
            raise BrokerUnavailableError("Failed to publish: connection refused")
        self.published.append(message)


def test_invalid_job_type_rejected_before_insert(repo, worker) -> None:
    producer = JobProducer(repo=repo, broker=FakeBroker(), worker=worker)

    with pytest.raises(ValidationError, match="Invalid job type"):
        producer.enqueue("automation", {}, "u1")

    assert repo.list_for_user("u1") == []


@pytest.mark.parametrize(
    ("job_type", "input_data"),
    [
        ("analyze", {"algorithmId": 5}),
        ("analyze", {"algorithmId": "five", "analysisType": "sanity"}),
        ("generate", {"inspiration": ""}),
        ("synthesize", {"algorithms": [{"name": "only one"}]}),
        ("improve", {"algorithmId": 5}),
        ("generate", ["not", "a", "dict"]),
    ],
)
def test_malformed_input_rejected(job_type, input_data) -> None:
    with pytest.raises(ValidationError):
        validate_job(job_type, input_data)


def test_enqueue_persists_pending_and_publishes(repo, worker) -> None:
    broker = FakeBroker()
    producer = JobProducer(repo=repo, broker=broker, worker=worker)

    jobId = producer.enqueue("analyze", ANALYZE_INPUT, "u1")

    record = repo.get(jobId)
    assert record.status == JobStatus.PENDING
    assert record.type == JobType.ANALYZE
    assert broker.published == [
        BrokerMessage(jobId=jobId, userId="u1", jobType=JobType.ANALYZE, inputData=ANALYZE_INPUT)
    ]


def test_broker_disabled_processes_inline(repo, worker) -> None:
    producer = JobProducer(repo=repo, broker=None, worker=worker)

    jobId = producer.enqueue("analyze", ANALYZE_INPUT, "u1")

    record = repo.get(jobId)
    assert record.status == JobStatus.COMPLETED
    assert "score" in record.resultData


def test_broker_disabled_inline_failure_does_not_raise(repo, algorithms) -> None:
    registry = ProcessorRegistry(ai_client=StubAIClient(error=RuntimeError("AI offline")), algorithms=algorithms)
    producer = JobProducer(repo=repo, broker=None, worker=JobWorker(repo=repo, processors=registry))

    jobId = producer.enqueue("generate", {"inspiration": "x", "domain": "y"})

    record = repo.get(jobId)
    assert record.status == JobStatus.FAILED
    assert record.errorMessage == "AI offline"


def test_publish_failure_falls_back_to_sync(repo, worker) -> None:
    producer = JobProducer(repo=repo, broker=FakeBroker(available=False), worker=worker, sync_fallback=True)

    jobId = producer.enqueue("analyze", ANALYZE_INPUT)

    assert repo.get(jobId).status == JobStatus.COMPLETED
    assert repo.unpublished() == []


def test_publish_failure_without_fallback_keeps_job_pending(repo, worker) -> None:
    broker = FakeBroker(available=False)
    producer = JobProducer(repo=repo, broker=broker, worker=worker, sync_fallback=False)

    jobId = producer.enqueue("analyze", ANALYZE_INPUT)

    assert repo.get(jobId).status == JobStatus.PENDING
    assert repo.unpublished() == [jobId]

    assert producer.republish_pending() == 0
    assert repo.unpublished() == [jobId]

    broker.available = True
    assert producer.republish_pending() == 1
    assert [m.jobId for m in broker.published] == [jobId]
    assert repo.unpublished() == []


def test_republish_skips_jobs_that_already_ran(repo, worker) -> None:
    broker = FakeBroker(available=False)
    producer = JobProducer(repo=repo, broker=broker, worker=worker, sync_fallback=False)
    jobId = producer.enqueue("analyze", ANALYZE_INPUT)
    worker.handle(BrokerMessage(jobId=jobId, jobType=JobType.ANALYZE, inputData=ANALYZE_INPUT))

    broker.available = True
    assert producer.republish_pending() == 0
    assert broker.published == []
    assert repo.unpublished() == []


class FailWriteRepo(InMemoryJobRepo):
    def fail(self, jobId, errorMessage):
        raise ConnectionError("store down")


def test_inline_store_failure_still_returns_job_id(algorithms) -> None:
    repo = FailWriteRepo()
    registry = ProcessorRegistry(ai_client=StubAIClient(error=RuntimeError("AI offline")), algorithms=algorithms)
    producer = JobProducer(repo=repo, broker=None, worker=JobWorker(repo=repo, processors=registry))

    jobId = producer.enqueue("generate", {"inspiration": "x", "domain": "y"})

    assert repo.get(jobId).status == JobStatus.PROCESSING

    # Left for the lease reaper, which writes through _mutate rather than fail()
    assert LeaseReaper(repo, lease_seconds=-1, interval=60).reap_once() == [jobId]
    assert repo.get(jobId).status == JobStatus.FAILED
