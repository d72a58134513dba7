import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from biosynth.config import APP_NAME, Settings, configure_logging
from biosynth.routes import router
from biosynth.runtime import build_runtime
from biosynth.workers.job_worker import LeaseReaper

logger = logging.getLogger(__name__)


def create_app(runtime=None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if runtime is None:
            settings = Settings.from_env()
            configure_logging(settings.log_level)
            app.state.runtime = build_runtime(settings)
        else:
            app.state.runtime = runtime

        settings = app.state.runtime.settings
        app.state.reaper = None
        if not settings.use_broker:
            logger.info("ℹ️ Broker is disabled. Jobs are processed synchronously.")
            app.state.reaper = LeaseReaper(
                app.state.runtime.repo,
                lease_seconds=settings.job_lease_seconds,
                interval=settings.lease_reap_interval_seconds,
            ).start()
            # Jobs left processing by a previous API process
            app.state.reaper.reap_once()

        yield

        if app.state.reaper is not None:
            app.state.reaper.stop()

    app = FastAPI(
        title=APP_NAME,
        version="1.0.0",
        lifespan=lifespan,
    )

    # ---------------------------
    # Routes
    # ---------------------------
    app.include_router(router)

    # ---------------------------
    # Health check
    # ---------------------------
    @app.get("/", tags=["health"])
    def health():
        runtime = app.state.runtime
        store_ping = getattr(runtime.repo, "ping", None)
        return {
            "status": "ok",
            "service": APP_NAME,
            "broker": "enabled" if runtime.settings.use_broker else "disabled",
            "store": "memory" if store_ping is None else ("ok" if store_ping() else "unreachable"),
        }

    return app


app = create_app()
