import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# --------------------------------------------------
# App
# --------------------------------------------------
APP_NAME = "BioSynth Jobs API"
API_PREFIX = "/v1"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return int(raw)


class Settings(BaseModel):
    env: str = "local"

    # Feature flags
    use_broker: bool = True
    sync_fallback: bool = True

    # Redis / Celery
    redis_url: Optional[str] = None
    redis_prefix: str = "biosynth:"
    job_ttl_seconds: Optional[int] = None
    queue_name: str = "ai-jobs"
    worker_concurrency: int = 5
    worker_pool: str = "threads"
    broker_retry_pause_seconds: float = 5.0

    # Leases
    job_lease_seconds: int = 900
    lease_reap_interval_seconds: int = 60

    # Polling
    poll_interval_seconds: float = 2.0
    poll_timeout_seconds: float = 300.0

    # AI
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    # Algorithm catalogue (main backend)
    algorithms_api_url: Optional[str] = None

    log_level: str = "INFO"

    @property
    def is_prod(self) -> bool:
        return self.env == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        settings = cls(
            env=os.getenv("ENV", "local"),
            use_broker=_flag("USE_BROKER", "true"),
            sync_fallback=_flag("SYNC_FALLBACK", "true"),
            redis_url=os.getenv("REDIS_URL"),
            redis_prefix=os.getenv("REDIS_PREFIX", "biosynth:"),
            job_ttl_seconds=_optional_int("JOB_TTL_SECONDS"),
            queue_name=os.getenv("QUEUE_NAME", "ai-jobs"),
            worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "5")),
            worker_pool=os.getenv("WORKER_POOL", "threads"),
            broker_retry_pause_seconds=float(os.getenv("BROKER_RETRY_PAUSE_SECONDS", "5")),
            job_lease_seconds=int(os.getenv("JOB_LEASE_SECONDS", "900")),
            lease_reap_interval_seconds=int(os.getenv("LEASE_REAP_INTERVAL_SECONDS", "60")),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "2")),
            poll_timeout_seconds=float(os.getenv("POLL_TIMEOUT_SECONDS", "300")),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            algorithms_api_url=os.getenv("ALGORITHMS_API_URL"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
        settings.validate_required()
        return settings

    def validate_required(self):
        if self.use_broker and not self.redis_url:
            raise RuntimeError("REDIS_URL is required when USE_BROKER=true")

        if self.is_prod and not self.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY is required in production")

        if self.worker_concurrency < 1:
            raise RuntimeError("WORKER_CONCURRENCY must be at least 1")


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
