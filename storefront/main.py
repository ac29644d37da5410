from contextlib import asynccontextmanager
from typing import Optional
import httpx
from fastapi import FastAPI
from storefront.api import cur_version, version_prefix
from storefront.api.routers import admin_routers, public_routers
from storefront.common.circuit_breaker import CircuitBreaker
from storefront.common.custom_exceptions import register_all_exceptions
from storefront.common.logging_setup import get_logger, setup_logging, shutdown_logging
from storefront.config.admin_config import admin_config
from storefront.config.settings import Settings, config_settings
from storefront.db.connection import build_engine, build_session_maker, create_all_tables
from storefront.middlewares.auth_middleware import AuthenticationMiddleware
from storefront.middlewares.request_id_middleware import RequestIdMiddleware
from storefront.orders.repository import OrderStore
from storefront.orders.services import OrderService
from storefront.payments.gateway import PaystackClient
from storefront.payments.repository import WebhookEventStore
from storefront.payments.webhooks import paystack_webhook

logger = get_logger("storefront.app")


def create_app(settings: Settings = config_settings,
               gateway_transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        setup_logging()

        engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
        if settings.DB_CREATE_ALL:
            await create_all_tables(engine)
        session_maker = build_session_maker(engine)

        http_client = httpx.AsyncClient(transport=gateway_transport, timeout=settings.GATEWAY_TIMEOUT_SECONDS)
        gateway = PaystackClient(
            http_client,
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            circuit=CircuitBreaker("paystack", failure_threshold=settings.GATEWAY_CIRCUIT_FAILURES,
                                   recovery_timeout=settings.GATEWAY_CIRCUIT_RECOVERY_SECONDS),
            verify_retries=settings.GATEWAY_VERIFY_RETRIES,
            retry_base_delay=settings.GATEWAY_RETRY_BASE_DELAY,
        )
        if not settings.PAYSTACK_SECRET_KEY:
            logger.warning("app.gateway_key_missing")

        app.state.settings = settings
        app.state.engine = engine
        app.state.session_maker = session_maker
        app.state.http_client = http_client
        app.state.gateway = gateway
        app.state.order_store = OrderStore(session_maker)
        app.state.order_service = OrderService(app.state.order_store, gateway, settings=settings)
        app.state.webhook_events = WebhookEventStore(session_maker)
        logger.info("app.startup", extra={"service": admin_config.SERVICE_NAME, "env": admin_config.ENV})

        try:
            yield
        finally:
            # new requests are no longer accepted at this point
            await http_client.aclose()
            await engine.dispose()
            logger.info("app.shutdown")
            shutdown_logging()

    app = FastAPI(
        title="Storefront",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)
    app.add_api_route(settings.PAYSTACK_WEBHOOK_PATH, paystack_webhook, methods=["POST"],
                      name="paystack_webhook", tags=["webhooks"])

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(AuthenticationMiddleware,
                       public_paths=[f"{version_prefix}/health", settings.PAYSTACK_WEBHOOK_PATH,
                                     "/docs", "/openapi.json", "/metrics"],
                       jwt_secret=settings.JWT_SECRET,
                       jwt_algo=settings.JWT_ALGO,
                       admin_role=settings.ADMIN_ROLE)
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    if admin_config.ENABLE_METRICS:
        from metrics.custom_instrumentator import build_instrumentator
        build_instrumentator().instrument(app).expose(app, endpoint="/metrics")

    return app


app = create_app()
