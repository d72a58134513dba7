# biosynth/runtime.py
from dataclasses import dataclass
from typing import Any, Optional

from biosynth.config import Settings
from biosynth.repos.redis_jobs import get_job_repo
from biosynth.services.ai_client import LangChainAIClient
from biosynth.services.algorithm_source import HttpAlgorithmSource, InMemoryAlgorithmSource
from biosynth.services.poller import JobPoller
from biosynth.services.processors import ProcessorRegistry
from biosynth.services.producer import JobProducer
from biosynth.workers.broker import JobBroker
from biosynth.workers.celery import create_celery_app
from biosynth.workers.job_worker import JobWorker


@dataclass
class Runtime:
    """Process-wide dependencies, built once at startup and passed explicitly."""

    settings: Settings
    repo: Any
    processors: ProcessorRegistry
    worker: JobWorker
    producer: JobProducer
    broker: Optional[JobBroker] = None
    celery: Any = None

    def poller(self, **overrides) -> JobPoller:
        options = {
            "interval": self.settings.poll_interval_seconds,
            "timeout": self.settings.poll_timeout_seconds,
        }
        options.update(overrides)
        return JobPoller(self.repo.get, **options)


def build_runtime(settings: Settings, *, repo=None, ai_client=None, algorithms=None,
                  broker=None, consumer: bool = False) -> Runtime:
    """
    Wire the subsystem for one process.

    `consumer=True` registers the job and reaper tasks on the Celery app
    (worker process); the API process only publishes.
    """
    repo = repo if repo is not None else get_job_repo(settings)

    if ai_client is None:
        ai_client = LangChainAIClient(model=settings.openai_model, api_key=settings.openai_api_key)

    if algorithms is None:
        if settings.algorithms_api_url:
            algorithms = HttpAlgorithmSource(settings.algorithms_api_url)
        else:
            algorithms = InMemoryAlgorithmSource()

    processors = ProcessorRegistry(ai_client=ai_client, algorithms=algorithms)
    worker = JobWorker(repo=repo, processors=processors, lease_seconds=settings.job_lease_seconds)

    celery = None
    if broker is None and settings.use_broker:
        celery = create_celery_app(
            settings,
            worker=worker if consumer else None,
            repo=repo if consumer else None,
        )
        broker = JobBroker(
            celery,
            queue=settings.queue_name,
            retry_pause=settings.broker_retry_pause_seconds,
        )

    producer = JobProducer(
        repo=repo,
        broker=broker,
        worker=worker,
        sync_fallback=settings.sync_fallback,
    )

    return Runtime(
        settings=settings,
        repo=repo,
        processors=processors,
        worker=worker,
        producer=producer,
        broker=broker,
        celery=celery,
    )
