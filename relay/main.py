"""FastAPI application wiring for the support relay.

The HTTP surface is small: the transport pushes events to ``/api/events``,
operators or cron may trigger ``/api/sync``, probes hit ``/api/health`` and
Prometheus scrapes ``/api/metrics``. Ticket sync and auto-close run on
background runners started with the application.

Run with ``uvicorn --factory relay.main:create_app``.
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __version__
from .app_logging import init_logging
from .bot import Relay, build_relay
from .core.config import get_settings
from .core.limits import limiter
from .routers import events
from .scheduler import PeriodicRunner

logger = logging.getLogger(__name__)


def _runners(relay: Relay) -> list[PeriodicRunner]:
    settings = relay.settings
    runners = []
    if settings.sync_interval > 0:
        runners.append(PeriodicRunner("ticket-sync", settings.sync_interval, relay.sync_issues))
    if settings.autoclose_interval > 0:
        runners.append(
            PeriodicRunner("auto-close", settings.autoclose_interval, relay.auto_close_requests)
        )
    return runners


def create_app(relay: Relay | None = None) -> FastAPI:
    """Build the application around ``relay`` (or one built from settings)."""

    load_dotenv()
    if relay is None:
        relay = build_relay(get_settings())
    runners = _runners(relay)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for runner in runners:
            runner.start()
        logger.info("relay %s started for %s", __version__, relay.room_id)
        try:
            yield
        finally:
            for runner in runners:
                runner.stop()
            relay.shutdown()
            logger.info("relay stopped")

    app = FastAPI(title="Support Relay", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.relay = relay
    app.state.runners = runners
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.include_router(events.router)

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )
    return app
