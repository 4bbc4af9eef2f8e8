"""
Rate Source

Resolves the per-minute rate a call is billed at. A host with charm level
data is billed at the level's rate; otherwise the host's stored static rate
applies.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass

from livecall.models.host import Host
from livecall.models.level import Level


class RateSource(ABC):
    """Where a host's per-minute rate comes from."""

    name: str = "base"

    @abstractmethod
    def rate_per_minute(self) -> int:
        ...


@dataclass
class LeveledRate(RateSource):
    """Rate unlocked by the host's charm level."""
    level: Level
    name: str = "charm_level"

    def rate_per_minute(self) -> int:
        return self.level.rate_per_minute()


@dataclass
class StaticRate(RateSource):
    """The rate stored on the host profile."""
    host: Host
    name: str = "static"

    def rate_per_minute(self) -> int:
        return self.host.rate_per_minute


def select_rate_source(host: Host, level: Level | None) -> RateSource:
    """Pick the variant by presence of level data."""
    if level is not None:
        return LeveledRate(level)
    return StaticRate(host)


async def resolve_rate_source(host: Host, using_db=None) -> RateSource:
    """Look up the host owner's charm level and return the matching RateSource."""
    qs = Level.filter(user_id=host.user_id)
    if using_db is not None:
        qs = qs.using_db(using_db)
    level = await qs.first()
    return select_rate_source(host, level)
