from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class RewardTier(BaseModel):
    id: str
    name: str
    points_cost: int = Field(..., gt=0)
    discount_type: Literal["percentage", "fixed"]
    discount_value: int = Field(..., gt=0)
    max_discount: Optional[int] = Field(None, ge=0)
    min_order_amount: int = Field(0, ge=0)
    description: str = ""
    validity_days: int = Field(..., gt=0)


class PointsMilestone(BaseModel):
    amount: int = Field(..., gt=0)
    bonus: int = Field(..., ge=0)


class RewardsConfig(BaseModel):
    """Loyalty rules handed to the ledger operations."""
    spending_ratio: int = Field(..., gt=0)
    first_order_bonus: int = Field(0, ge=0)
    milestones: List[PointsMilestone] = []
    tiers: List[RewardTier] = []

    def get_tier(self, tier_id: str) -> Optional[RewardTier]:
        for tier in self.tiers:
            if tier.id == tier_id:
                return tier
        return None


class RedeemIn(BaseModel):
    tier_id: str = Field(..., min_length=1, max_length=64)

    model_config = {"extra": "forbid"}
