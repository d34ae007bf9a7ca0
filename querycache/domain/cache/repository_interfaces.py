"""
Cache Repository Interfaces

Abstract contracts for storage tiers and the tag version registry.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional, Tuple

from .entities import CacheEntry
from .value_objects import TTL


class StorageTier(ABC):
    """
    Abstract key/value storage tier.

    Implementations MUST NOT raise for operational failures: a failed read is
    reported as ``(None, False)`` and a failed write, delete or flush as
    ``False``.
    """

    name: str = "tier"

    @abstractmethod
    async def get(self, key: str) -> Tuple[Optional[CacheEntry], bool]:
        """Return ``(entry, found)`` for key."""
        pass

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry, ttl: TTL) -> bool:
        """Store entry under key for ttl."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. True if an entry was removed."""
        pass

    @abstractmethod
    async def flush_namespace(self, namespace: str) -> bool:
        """Best-effort removal of every key of a namespace."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None


class TagVersionRepository(ABC):
    """
    Abstract registry of per-tag generation counters.

    ``bump`` MUST be atomic under concurrent callers. Backend failures are
    raised as ``TagRegistryUnavailableError``.
    """

    @abstractmethod
    async def current_version(self, tag: str) -> int:
        """Current version of tag, 0 if never bumped."""
        pass

    @abstractmethod
    async def bump(self, tag: str) -> int:
        """Atomically increment tag and return the new version."""
        pass

    @abstractmethod
    async def current_versions(self, tags: Iterable[str]) -> Dict[str, int]:
        """Current versions of several tags."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None
