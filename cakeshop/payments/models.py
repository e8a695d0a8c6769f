from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, Field, field_validator


class GatewayConfig(BaseModel):
    """Merchant credentials and endpoints for the eSewa style gateway."""
    merchant_code: str
    secret_key: str
    payment_url: str
    status_url: str
    success_url: str
    failure_url: str
    frontend_url: str
    status_timeout: float = 10.0
    max_retries: int = Field(3, ge=1)
    backoff_base: float = Field(0.5, ge=0)


class InitiatePaymentIn(BaseModel):
    order_id: UUID


class GatewayCallback(BaseModel):
    transaction_code: Optional[str] = None
    status: str
    total_amount: str
    transaction_uuid: str = Field(..., min_length=1)
    product_code: str
    signed_field_names: str
    signature: str

    model_config = {"extra": "ignore"}

    @field_validator("total_amount", "transaction_code", mode="before")
    @classmethod
    def _stringify(cls, v: Any):
        # the gateway sends amounts either as "1,100.0" or as a bare number
        if v is None or isinstance(v, str):
            return v
        return str(v)


class GatewayStatusResponse(BaseModel):
    product_code: Optional[str] = None
    transaction_uuid: Optional[str] = None
    total_amount: Optional[str] = None
    status: str
    ref_id: Optional[str] = None

    model_config = {"extra": "ignore"}

    @field_validator("total_amount", "ref_id", mode="before")
    @classmethod
    def _stringify(cls, v: Any):
        if v is None or isinstance(v, str):
            return v
        return str(v)
