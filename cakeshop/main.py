from contextlib import asynccontextmanager
from fastapi import FastAPI
from cakeshop.api import cur_version, version_prefix
from cakeshop.api.routers import admin_routers, public_routers
from cakeshop.common.custom_exceptions import register_all_exceptions
from cakeshop.common.logging_setup import setup_logging, stop_logging
from cakeshop.config.admin_config import admin_config
from cakeshop.db.connection import async_engine, async_session
from cakeshop.middlewares.auth_middleware import AuthenticationMiddleware
from cakeshop.middlewares.request_id_middleware import RequestIdMiddleware


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()
    try:
        yield
    finally:
        # new requests are no longer accepted at this point
        await async_engine.dispose()
        stop_logging()


def create_app():
    app = FastAPI(
        title="Cakeshop",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(AuthenticationMiddleware, session_maker=async_session,
                       paths=[f"{version_prefix}/health",
                              f"{version_prefix}/payments/esewa/success",
                              f"{version_prefix}/payments/esewa/failure",
                              "/docs", "/redoc", "/openapi.json"],
                       maybe_auth_paths=[f"{version_prefix}/rewards/tiers"])
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app


app = create_app()
