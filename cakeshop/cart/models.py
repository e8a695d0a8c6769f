from typing import List, Literal, Optional
from uuid import UUID
from pydantic import BaseModel, Field
from cakeshop.cart.constants import MAX_ITEM_QTY, MIN_ITEM_QTY


class WeightSelection(BaseModel):
    weight_in_kg: float = Field(..., gt=0)


class CustomizationIn(BaseModel):
    message: Optional[str] = Field(None, max_length=100)
    special_instructions: Optional[str] = Field(None, max_length=500)


class CartItemInput(BaseModel):
    product_id: UUID
    quantity: int = Field(1, ge=MIN_ITEM_QTY, le=MAX_ITEM_QTY)
    selected_weight: WeightSelection
    customization: Optional[CustomizationIn] = None

    model_config = {"extra": "forbid"}


class CustomCakeInput(BaseModel):
    name: Optional[str] = Field(None, max_length=120)
    flavor: str = Field(..., min_length=1, max_length=60)
    weight_in_kg: float = Field(..., gt=0, le=20)
    quantity: int = Field(1, ge=MIN_ITEM_QTY, le=MAX_ITEM_QTY)
    tiers: int = Field(1, ge=1, le=5)
    size: Optional[str] = Field(None, max_length=40)
    color: Optional[str] = Field(None, max_length=40)
    frosting_color_hex: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    topper: Optional[str] = Field(None, max_length=60)
    message: Optional[str] = Field(None, max_length=100)
    preview_image: Optional[str] = Field(None, max_length=2048)

    model_config = {"extra": "forbid"}


class QuantityUpdateIn(BaseModel):
    quantity: int = Field(..., ge=MIN_ITEM_QTY, le=MAX_ITEM_QTY)


class DeliveryTypeIn(BaseModel):
    delivery_type: Literal["delivery", "pickup"]


class PromoCodeIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)


class SyncItemIn(BaseModel):
    product_id: UUID
    quantity: int = Field(1, ge=1)
    selected_weight: WeightSelection


class CartSyncIn(BaseModel):
    items: List[SyncItemIn] = Field(default_factory=list, max_length=50)
