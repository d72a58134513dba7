from celery import Celery

TASK_RUN_JOB = "biosynth.run_job"
TASK_REAP_STALE = "biosynth.reap_stale_jobs"

# Publish retry: 3 attempts, 0.2s steps capped at 2s
PUBLISH_RETRY_POLICY = {
    "max_retries": 3,
    "interval_start": 0.2,
    "interval_step": 0.2,
    "interval_max": 2,
}


def create_celery_app(settings, *, worker=None, repo=None) -> Celery:
    """
    Celery app bound to the given dependencies.

    A producer-only process passes nothing and publishes by task name.
    The worker process passes its JobWorker (and repo for the lease
    reaper) so the tasks close over them instead of module globals.
    """
    if not settings.redis_url:
        raise RuntimeError("REDIS_URL is required when USE_BROKER=true")

    celery = Celery(
        "biosynth_worker",
        broker=settings.redis_url,
    )

    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_ignore_result=True,
        task_default_queue=settings.queue_name,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_publish_retry=True,
        task_publish_retry_policy=PUBLISH_RETRY_POLICY,
        worker_concurrency=settings.worker_concurrency,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        broker_connection_max_retries=None,
        broker_transport_options={"visibility_timeout": settings.job_lease_seconds + 60},
    )

    # -------------------------------------------------
    # Tasks (worker side only)
    # -------------------------------------------------
    if worker is not None:
        @celery.task(bind=True, name=TASK_RUN_JOB)
        def run_job(self, **message):
            return worker.handle(message)

    if repo is not None:
        @celery.task(name=TASK_REAP_STALE)
        def reap_stale_jobs():
            return repo.expire_stale(settings.job_lease_seconds)

        celery.conf.beat_schedule = {
            "reap-stale-jobs": {
                "task": TASK_REAP_STALE,
                "schedule": float(settings.lease_reap_interval_seconds),
            },
        }

    return celery
