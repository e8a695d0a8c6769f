from functools import lru_cache
from typing import AsyncGenerator
import httpx
from cakeshop.api import version_prefix
from cakeshop.config.settings import config_settings
from cakeshop.payments.models import GatewayConfig


def build_gateway_config(settings=config_settings) -> GatewayConfig:
    backend = settings.BACKEND_URL.rstrip("/")
    return GatewayConfig(
        merchant_code=settings.ESEWA_MERCHANT_CODE,
        secret_key=settings.ESEWA_SECRET_KEY,
        payment_url=settings.ESEWA_PAYMENT_URL,
        status_url=settings.ESEWA_STATUS_URL,
        success_url=f"{backend}{version_prefix}/payments/esewa/success",
        failure_url=f"{backend}{version_prefix}/payments/esewa/failure",
        frontend_url=settings.FRONTEND_URL.rstrip("/"),
        status_timeout=settings.ESEWA_STATUS_TIMEOUT,
    )


@lru_cache
def get_gateway_config() -> GatewayConfig:
    return build_gateway_config()


async def get_gateway_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    config = get_gateway_config()
    async with httpx.AsyncClient(timeout=config.status_timeout) as client:
        yield client
