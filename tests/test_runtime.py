from __future__ import annotations

import pytest

from biosynth import worker as worker_entry
from biosynth.config import Settings
from biosynth.runtime import build_runtime
from biosynth.services.poller import JobPoller
from biosynth.workers.broker import JobBroker

from conftest import StubAIClient

ENV_KEYS = (
    "ENV", "USE_BROKER", "SYNC_FALLBACK", "REDIS_URL", "JOB_TTL_SECONDS",
    "WORKER_CONCURRENCY", "OPENAI_API_KEY", "POLL_TIMEOUT_SECONDS",
)


@pytest.fixture()
def clean_env(monkeypatch):
    monkeypatch.setattr("biosynth.config.load_dotenv", lambda *a, **k: False)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_settings_from_env(clean_env) -> None:
    clean_env.setenv("USE_BROKER", "false")
    clean_env.setenv("JOB_TTL_SECONDS", "3600")
    clean_env.setenv("WORKER_CONCURRENCY", "8")
    clean_env.setenv("POLL_TIMEOUT_SECONDS", "60")

    settings = Settings.from_env()

    assert settings.use_broker is False
    assert settings.sync_fallback is True
    assert settings.job_ttl_seconds == 3600
    assert settings.worker_concurrency == 8
    assert settings.poll_timeout_seconds == 60.0


def test_broker_requires_redis_url(clean_env) -> None:
    clean_env.setenv("USE_BROKER", "true")
    with pytest.raises(RuntimeError, match="REDIS_URL"):
        Settings.from_env()


def test_production_requires_api_key(clean_env) -> None:
    clean_env.setenv("ENV", "production")
    clean_env.setenv("USE_BROKER", "false")
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        Settings.from_env()


def test_concurrency_must_be_positive(clean_env) -> None:
    clean_env.setenv("USE_BROKER", "false")
    clean_env.setenv("WORKER_CONCURRENCY", "0")
    with pytest.raises(RuntimeError, match="WORKER_CONCURRENCY"):
        Settings.from_env()


def test_runtime_without_broker(settings, repo, algorithms) -> None:
    runtime = build_runtime(settings, repo=repo, ai_client=StubAIClient(), algorithms=algorithms)

    assert runtime.broker is None
    assert runtime.celery is None
    assert runtime.producer.broker is None

    poller = runtime.poller(timeout=None)
    assert isinstance(poller, JobPoller)
    assert poller.timeout is None
    assert poller.interval == settings.poll_interval_seconds


def test_runtime_with_broker(repo, algorithms) -> None:
    settings = Settings(use_broker=True, redis_url="redis://localhost:6379/0")

    runtime = build_runtime(settings, repo=repo, ai_client=StubAIClient(), algorithms=algorithms)

    assert isinstance(runtime.broker, JobBroker)
    assert runtime.producer.broker is runtime.broker
    assert runtime.celery.conf.task_default_queue == settings.queue_name


def test_worker_entry_exits_when_broker_disabled(clean_env) -> None:
    clean_env.setenv("USE_BROKER", "false")
    assert worker_entry.main([]) == 0


def test_worker_argv_embeds_beat_and_concurrency() -> None:
    argv = worker_entry.worker_argv(Settings(worker_concurrency=3, queue_name="ai-jobs"))
    assert argv[:2] == ["worker", "--beat"]
    assert "--concurrency=3" in argv
    assert "--queues=ai-jobs" in argv
