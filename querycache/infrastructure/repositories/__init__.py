"""Storage tier and tag registry implementations."""

from .storage_tiers import MemoryStorageTier, RedisStorageTier
from .tag_version_repository import (
    InMemoryTagVersionRepository,
    RedisTagVersionRepository,
)

__all__ = [
    "MemoryStorageTier",
    "RedisStorageTier",
    "InMemoryTagVersionRepository",
    "RedisTagVersionRepository",
]
