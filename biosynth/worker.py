# biosynth/worker.py
"""
Queue worker entry point: `python -m biosynth.worker`.

Starts a Celery worker (with an embedded beat for the lease reaper) once
the broker answers. With USE_BROKER=false it exits without starting; jobs
are then processed synchronously by the API process.
"""

import logging
import sys

from biosynth.config import Settings, configure_logging
from biosynth.runtime import build_runtime

logger = logging.getLogger("biosynth.worker")


def worker_argv(settings: Settings):
    return [
        "worker",
        "--beat",
        f"--queues={settings.queue_name}",
        f"--concurrency={settings.worker_concurrency}",
        f"--pool={settings.worker_pool}",
        f"--loglevel={settings.log_level.upper()}",
    ]


def main(argv=None) -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if not settings.use_broker:
        logger.info("ℹ️ Broker is disabled (USE_BROKER=false). Queue worker not started.")
        logger.info("ℹ️ The API processes jobs synchronously.")
        return 0

    runtime = build_runtime(settings, consumer=True)

    logger.info("🚀 Starting queue worker (concurrency=%d)", settings.worker_concurrency)
    runtime.broker.wait_until_available()

    runtime.celery.worker_main(worker_argv(settings) + list(argv or []))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
