"""
Cache Value Objects

Immutable value objects for the query cache domain.
Provides type safety and validation for keys, TTLs, tags and tag versions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class CacheNamespace(str, Enum):
    """Namespaces used by the domain helpers."""

    CATALOG = "catalog"
    AVAILABILITY = "availability"
    PRICING = "pricing"
    CAPACITY = "capacity"


def validate_namespace(namespace: str) -> str:
    """Validate a namespace string and return it unchanged."""
    if isinstance(namespace, CacheNamespace):
        return namespace.value
    if not isinstance(namespace, str) or not namespace:
        raise ValueError("Cache namespace must be a non-empty string")
    if ":" in namespace or any(char.isspace() for char in namespace):
        raise ValueError("Cache namespace cannot contain ':' or whitespace")
    return namespace


@dataclass(frozen=True)
class CacheKey:
    """
    Immutable cache key value object.

    Keys have the shape ``<prefix>:<namespace>:<digest>``.
    """

    value: str

    MAX_LENGTH = 250

    def __post_init__(self) -> None:
        """Validate cache key format."""
        if not isinstance(self.value, str) or not self.value:
            raise ValueError("Cache key cannot be empty")

        if len(self.value) > self.MAX_LENGTH:
            raise ValueError("Cache key too long (max 250 characters)")

        if any(char.isspace() for char in self.value):
            raise ValueError("Cache key cannot contain whitespace")

    @classmethod
    def build(cls, prefix: str, namespace: str, digest: str) -> "CacheKey":
        """Create a cache key from its parts."""
        return cls(f"{prefix}:{validate_namespace(namespace)}:{digest}")

    @staticmethod
    def namespace_prefix(prefix: str, namespace: str) -> str:
        """Key prefix shared by every entry of a namespace."""
        return f"{prefix}:{validate_namespace(namespace)}:"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TTL:
    """
    Time To Live value object for cache expiration.
    """

    seconds: int

    def __post_init__(self) -> None:
        """Validate TTL value."""
        if isinstance(self.seconds, bool) or not isinstance(self.seconds, int):
            raise ValueError("TTL must be an integer number of seconds")
        if self.seconds <= 0:
            raise ValueError("TTL must be positive")
        if self.seconds > 86400 * 365:  # Max 1 year
            raise ValueError("TTL too large (max 1 year)")

    @classmethod
    def minutes(cls, minutes: int) -> "TTL":
        """Create TTL from minutes."""
        return cls(minutes * 60)

    @classmethod
    def hours(cls, hours: int) -> "TTL":
        """Create TTL from hours."""
        return cls(hours * 3600)

    @classmethod
    def coerce(cls, ttl: Union["TTL", int, float]) -> "TTL":
        """Accept a TTL, or a number of seconds."""
        if isinstance(ttl, TTL):
            return ttl
        if isinstance(ttl, float):
            ttl = int(ttl)
        return cls(ttl)

    def __str__(self) -> str:
        return f"{self.seconds}s"


@dataclass(frozen=True)
class CacheTag:
    """
    Cache tag value object for invalidation scopes.

    A tag groups every entry derived from one entity (``product:42``) or one
    coarse scope (``catalog``).
    """

    value: str

    def __post_init__(self) -> None:
        """Validate tag value."""
        if not isinstance(self.value, str) or not self.value:
            raise ValueError("Cache tag cannot be empty")
        if len(self.value) > 100:
            raise ValueError("Cache tag too long (max 100 characters)")
        if any(char.isspace() for char in self.value):
            raise ValueError("Cache tag cannot contain whitespace")

    @classmethod
    def product(cls, product_id: Union[int, str]) -> "CacheTag":
        """Create product-specific cache tag."""
        return cls(f"product:{product_id}")

    @classmethod
    def catalog(cls) -> "CacheTag":
        """Catalog-wide cache tag."""
        return cls(CacheNamespace.CATALOG.value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TagVersion:
    """
    Generation counter of one tag.

    Versions only move forward; version 0 means the tag was never bumped.
    """

    tag: str
    version: int = 0

    def __post_init__(self) -> None:
        """Validate version value."""
        if self.version < 0:
            raise ValueError("Tag version cannot be negative")

    def next(self) -> "TagVersion":
        """Get next version."""
        return TagVersion(self.tag, self.version + 1)

    def __str__(self) -> str:
        return f"{self.tag}:{self.version}"
