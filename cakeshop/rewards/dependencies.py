from functools import lru_cache
from cakeshop.config.settings import config_settings
from cakeshop.rewards.constants import ORDER_MILESTONES, REWARD_TIERS
from cakeshop.rewards.models import PointsMilestone, RewardTier, RewardsConfig


def build_rewards_config(settings=config_settings) -> RewardsConfig:
    return RewardsConfig(
        spending_ratio=settings.POINTS_SPENDING_RATIO,
        first_order_bonus=settings.POINTS_FIRST_ORDER_BONUS,
        milestones=sorted((PointsMilestone(**m) for m in ORDER_MILESTONES), key=lambda m: m.amount),
        tiers=[RewardTier(**t) for t in REWARD_TIERS],
    )


@lru_cache
def get_rewards_config() -> RewardsConfig:
    return build_rewards_config()
