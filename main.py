"""
Storefront application wiring.

All auth state lives on explicitly constructed objects: one RefreshCoordinator
per process, handed to the resolver and the auth service. Nothing auth-related
is kept at module level.

Run with:
    uvicorn main:create_app_from_vault --factory
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI

from api.checkout import create_checkout_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from api.orders import create_orders_router
from api.pages import create_pages_router
from auth.api import create_auth_router
from auth.config import AuthConfig
from auth.rate_limiter import RateLimiter
from auth.refresh import RefreshCoordinator
from auth.resolver import SessionResolver
from auth.route_guard import RouteGuardMiddleware
from auth.security_logger import SecurityLogger
from auth.security_middleware import CredentialMiddleware
from auth.service import AuthService
from clients.backend_client import BackendClient
from clients.identity_client import IdentityProviderClient
from clients.payment_client import PaymentClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from core.services.checkout_service import CheckoutService
from core.services.order_service import BackendOrderWriter, DirectOrderWriter, OrderService

logger = logging.getLogger(__name__)


@dataclass
class AuthServices:
    """The per-process auth graph."""

    config: AuthConfig
    coordinator: RefreshCoordinator
    resolver: SessionResolver
    auth_service: AuthService


def build_auth_services(
    config: AuthConfig,
    identity: IdentityProviderClient,
    valkey: ValkeyClient,
    security_logger: SecurityLogger,
) -> AuthServices:
    coordinator = RefreshCoordinator(identity, config, security_logger)
    resolver = SessionResolver(identity, coordinator)
    auth_service = AuthService(
        config=config,
        identity=identity,
        coordinator=coordinator,
        rate_limiter=RateLimiter(valkey, config),
        security_logger=security_logger,
    )
    return AuthServices(config, coordinator, resolver, auth_service)


def create_app(
    config: AuthConfig,
    identity: IdentityProviderClient,
    backend: BackendClient,
    payments: PaymentClient,
    postgres: PostgresClient,
    valkey: ValkeyClient,
) -> FastAPI:
    """Assemble the app from already constructed clients."""
    security_logger = SecurityLogger(postgres)
    auth = build_auth_services(config, identity, valkey, security_logger)

    order_svc = OrderService(
        resolver=auth.resolver,
        backend=backend,
        primary=BackendOrderWriter(backend),
        fallback=DirectOrderWriter(postgres),
        security_logger=security_logger,
    )
    checkout_svc = CheckoutService(config, payments, order_svc, auth.resolver)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await security_logger.drain()
        await identity.close()
        await backend.close()
        payments.close()
        valkey.close()
        postgres.close()
        logger.info("Storefront clients closed")

    app = FastAPI(title="Storefront", lifespan=lifespan)
    app.state.auth = auth

    # Last added runs first: request id, then credentials, then the guard
    app.add_middleware(RouteGuardMiddleware, config=config)
    app.add_middleware(CredentialMiddleware, config=config)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_auth_router(auth.auth_service, auth.resolver), prefix="/api/auth")
    app.include_router(create_orders_router(order_svc), prefix="/api")
    app.include_router(create_checkout_router(checkout_svc), prefix="/api")
    app.include_router(create_pages_router(config, auth.resolver, order_svc))

    return app


def create_app_from_vault(config: AuthConfig | None = None) -> FastAPI:
    """Production entry point: every secret comes from Vault."""
    from clients.vault_client import (
        get_database_url,
        get_identity_config,
        get_payment_config,
        get_valkey_url,
    )

    config = config or AuthConfig()
    identity_config = get_identity_config()
    payment_config = get_payment_config()

    return create_app(
        config=config,
        identity=IdentityProviderClient(
            identity_config["url"],
            identity_config["anon_key"],
            timeout_seconds=config.provider_timeout_seconds,
        ),
        backend=BackendClient(
            identity_config["url"],
            identity_config["anon_key"],
            timeout_seconds=config.provider_timeout_seconds,
        ),
        payments=PaymentClient(payment_config["secret_key"], payment_config["webhook_secret"]),
        postgres=PostgresClient(get_database_url()),
        valkey=ValkeyClient(get_valkey_url()),
    )
