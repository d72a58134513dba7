"""Shared test fixtures."""

from __future__ import annotations

import json
import threading
from typing import Any, Callable

import pytest

from biosynth.config import Settings
from biosynth.repos.redis_jobs import InMemoryJobRepo
from biosynth.runtime import build_runtime
from biosynth.services.algorithm_source import InMemoryAlgorithmSource
from biosynth.services.processors import ProcessorRegistry
from biosynth.workers.job_worker import JobWorker

SAMPLE_ALGORITHM = {
    "name": "Mycelial Route Weaver",
    "inspiration": "Fungal mycelium networks",
    "domain": "Network routing",
    "description": "Routes traffic by reinforcing nutrient-rich paths.",
    "principle": "Resource-driven hyphal growth",
    "steps": '["Seed hyphae", "Grow toward demand", "Prune idle links"]',
    "applications": "Mesh networks, Logistics",
    "pseudo_code": "while demand: grow(); prune()",
    "tags": "Routing, Distributed",
}


def fake_value(schema: dict[str, Any]) -> Any:
    kind = schema.get("type")
    if kind == "object":
        props = schema.get("properties", {})
        return {key: fake_value(props.get(key, {})) for key in schema.get("required", props)}
    if kind == "array":
        return [fake_value(schema.get("items", {"type": "string"}))]
    if kind == "integer":
        return 80
    if "enum" in schema:
        return schema["enum"][0]
    return "stub"


class StubAIClient:
    """Answers with JSON that satisfies the requested schema, fenced like a real model."""

    def __init__(self, reply: str | Callable[..., str] | None = None, error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, str, Any]] = []
        self._lock = threading.Lock()

    def generate_text(self, system_prompt: str, user_prompt: str, schema_hint: Any = None) -> str:
        with self._lock:
            self.calls.append((system_prompt, user_prompt, schema_hint))
        if self.error is not None:
            raise self.error
        if callable(self.reply):
            return self.reply(system_prompt, user_prompt, schema_hint)
        if self.reply is not None:
            return self.reply
        return "```json\n" + json.dumps(fake_value(schema_hint or {"type": "object"})) + "\n```"


@pytest.fixture()
def settings() -> Settings:
    return Settings(use_broker=False, poll_interval_seconds=0.01, poll_timeout_seconds=2)


@pytest.fixture()
def repo() -> InMemoryJobRepo:
    return InMemoryJobRepo()


@pytest.fixture()
def algorithms() -> InMemoryAlgorithmSource:
    return InMemoryAlgorithmSource({5: dict(SAMPLE_ALGORITHM)})


@pytest.fixture()
def ai_client() -> StubAIClient:
    return StubAIClient()


@pytest.fixture()
def processors(ai_client, algorithms) -> ProcessorRegistry:
    return ProcessorRegistry(ai_client=ai_client, algorithms=algorithms)


@pytest.fixture()
def worker(repo, processors) -> JobWorker:
    return JobWorker(repo=repo, processors=processors, lease_seconds=900)


@pytest.fixture()
def runtime(settings, repo, ai_client, algorithms):
    return build_runtime(settings, repo=repo, ai_client=ai_client, algorithms=algorithms)
