from contextlib import asynccontextmanager
from fastapi import FastAPI
from fusionmarkt.api import cur_version
from fusionmarkt.api.routers import admin_routers, public_routers
from fusionmarkt.cache.redis_client import redis_from_settings
from fusionmarkt.common.custom_exceptions import register_all_exceptions
from fusionmarkt.common.logging_setup import get_logger, setup_logging, stop_logging
from fusionmarkt.config.settings import config_settings
from fusionmarkt.db.connection import async_engine
from fusionmarkt.middlewares.rate_limit_middleware import RateLimitMiddleware
from fusionmarkt.middlewares.request_id_middleware import RequestIdMiddleware
from fusionmarkt.notifications.dispatcher import NotificationDispatcher
from fusionmarkt.notifications.email import EmailClient
from fusionmarkt.payments.iyzico import IyzicoClient
from fusionmarkt.rate_limiting.limiter import RateLimiter

logger = get_logger("fusionmarkt.app")


def _populate_state(state) -> None:
    """Build the shared collaborators. Anything already placed on ``app.state`` is kept."""
    if getattr(state, "settings", None) is None:
        state.settings = config_settings
    settings = state.settings
    if getattr(state, "rate_limiter", None) is None:
        state.rate_limiter = RateLimiter(redis=redis_from_settings(settings), fail_open=settings.RATE_LIMIT_FAIL_OPEN)
    if getattr(state, "email_sender", None) is None:
        state.email_sender = EmailClient(settings)
    if getattr(state, "notifier", None) is None:
        state.notifier = NotificationDispatcher(state.email_sender, workers_count=settings.NOTIFICATION_WORKERS)
    if getattr(state, "gateway", None) is None:
        state.gateway = IyzicoClient(settings)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    state = app.state
    _populate_state(state)
    setup_logging(state.settings)

    await state.notifier()
    if not state.gateway.enabled:
        logger.warning("iyzico.not_configured")
    logger.info("app.started", extra={"service": state.settings.SERVICE_NAME, "env": state.settings.ENV})

    try:
        yield
    finally:
        # no new requests at this point; queued mails go out before the engine is disposed
        await state.notifier.shutdown(drain_timeout=10.0)
        redis = state.rate_limiter.redis
        if redis is not None:
            await redis.aclose()
        await async_engine.dispose()
        logger.info("app.stopped")
        stop_logging()


def create_app(settings=config_settings):
    app = FastAPI(
        title="FusionMarkt Checkout",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)
    if settings.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/admin

    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app


app = create_app()
