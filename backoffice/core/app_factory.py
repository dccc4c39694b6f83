from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from ..application.services.admin_auth_service import AdminAuthService
from ..application.services.sync_service import SubscriptionMembershipSyncService
from ..domain.errors import SyncError
from ..domain.policy import StatusTransitionPolicy
from ..infrastructure.clock import SystemClock
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import admin as admin_router
from ..presentation.api.routers import cron as cron_router
from ..presentation.api.routers import memberships as memberships_router
from ..presentation.api.routers import subscriptions as subscriptions_router
from ..presentation.api.routers import webhooks as webhooks_router
from ..services.stripe_service import StripePaymentGateway

logger = logging.getLogger(__name__)


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="Membership Back Office", lifespan=_create_lifespan(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(admin_router.router)
    app.include_router(subscriptions_router.router)
    app.include_router(memberships_router.router)
    app.include_router(webhooks_router.router)
    app.include_router(cron_router.router)

    @app.exception_handler(SyncError)
    async def handle_sync_error(request: Request, exc: SyncError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("%s %s failed with %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        gateway = container.payment_gateway
        return {
            "ok": True,
            "payment_gateway": bool(gateway is not None and getattr(gateway, "is_configured", True)),
        }

    return app


def _create_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        persistence = SQLitePersistence(settings.database_path)
        clock = SystemClock()
        gateway = StripePaymentGateway(settings.stripe_secret_key, settings.stripe_timeout_seconds)
        policy = StatusTransitionPolicy(failure_threshold=settings.payment_failure_threshold)
        sync_service = SubscriptionMembershipSyncService(
            persistence,
            clock,
            policy=policy,
            gateway=gateway,
            event_retention_hours=settings.payment_event_retention_hours,
        )
        admin_auth_service = AdminAuthService(
            users=persistence,
            secret_key=settings.admin_token_secret,
            token_exp_minutes=settings.admin_token_exp_minutes,
        )
        admin_auth_service.ensure_default_admin(
            settings.admin_default_email, settings.admin_default_password
        )

        app.state.container = ApplicationContainer(  # type: ignore[attr-defined]
            settings=settings,
            persistence=persistence,
            clock=clock,
            payment_gateway=gateway,
            sync_service=sync_service,
            admin_auth_service=admin_auth_service,
        )
        logger.info(
            "Back office started (database=%s, failure threshold=%d)",
            settings.database_path,
            policy.failure_threshold,
        )

        try:
            yield
        finally:
            persistence.close()

    return lifespan
