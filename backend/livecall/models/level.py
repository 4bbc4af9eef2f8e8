# livecall/models/level.py
"""
Charm level progression for hosts.
Lifetime beans earned from call settlements drive the charm level, and the
charm level unlocks a higher per-minute rate.
"""
import uuid
from tortoise import fields, models

# (level, minimum lifetime beans), ascending
CHARM_LEVEL_THRESHOLDS = [
    (1, 0),
    (2, 1),
    (3, 10),
    (4, 1_000_000),
    (5, 2_000_000),
    (6, 2_500_000),
    (7, 3_000_000),
]

# Coins per minute unlocked at each charm level
RATE_BY_CHARM_LEVEL = {1: 50, 2: 100, 3: 150, 4: 200, 5: 250, 6: 300, 7: 350}
FALLBACK_CHARM_RATE = 50


def charm_level_for(beans: int) -> int:
    """Highest level whose threshold `beans` has reached."""
    level = 1
    for lvl, threshold in CHARM_LEVEL_THRESHOLDS:
        if beans >= threshold:
            level = lvl
    return level


def rate_for_charm_level(level: int) -> int:
    return RATE_BY_CHARM_LEVEL.get(level, FALLBACK_CHARM_RATE)


class Level(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.OneToOneField("models.User", related_name="level", on_delete=fields.CASCADE)
    charm_level = fields.IntField(default=1)
    total_beans_earned = fields.BigIntField(default=0)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "levels"

    def add_beans(self, beans: int) -> None:
        """Accumulate earned beans and recompute the charm level."""
        self.total_beans_earned += beans
        self.charm_level = charm_level_for(self.total_beans_earned)

    def rate_per_minute(self) -> int:
        return rate_for_charm_level(self.charm_level)
