"""
Cache Domain Entities

Core domain entity for stored query results.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .value_objects import TTL


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    """
    Cached query result.

    Records the tag versions that were current when the value was written.
    Each storage tier keeps its own serialized copy.
    """

    value: Any
    ttl: TTL
    stored_tag_versions: Dict[str, int] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        value: Any,
        ttl: TTL,
        tag_versions: Optional[Dict[str, int]] = None,
    ) -> "CacheEntry":
        """Create new cache entry."""
        return cls(
            value=value,
            ttl=ttl,
            stored_tag_versions=dict(tag_versions or {}),
            created_at=_utcnow(),
        )

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.ttl.seconds)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if cache entry is expired."""
        return (now or _utcnow()) >= self.expires_at

    def remaining_ttl(self, now: Optional[datetime] = None) -> int:
        """Remaining lifetime in whole seconds, 0 once expired."""
        remaining = (self.expires_at - (now or _utcnow())).total_seconds()
        return max(0, int(remaining))

    def to_bytes(self) -> bytes:
        """
        Serialize entry to JSON bytes.

        Only values that decode back equal to themselves are accepted, so a
        cached read never differs from the computed value (tuples, non-string
        mapping keys, Decimal and datetime values are rejected).

        Raises:
            TypeError, ValueError: If the value cannot be encoded faithfully
        """
        encoded_value = json.dumps(self.value, separators=(",", ":"), allow_nan=False)
        if json.loads(encoded_value) != self.value:
            raise ValueError(
                f"Value of type {type(self.value).__name__} does not survive JSON encoding"
            )

        payload = {
            "value": self.value,
            "ttl": self.ttl.seconds,
            "tags": self.stored_tag_versions,
            "created_at": self.created_at.isoformat(),
        }
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "CacheEntry":
        """
        Deserialize entry from JSON bytes.

        Raises:
            ValueError, KeyError, TypeError: If the payload is malformed
        """
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
        created_at = datetime.fromisoformat(payload["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        return cls(
            value=payload["value"],
            ttl=TTL(int(payload["ttl"])),
            stored_tag_versions={
                str(tag): int(version) for tag, version in payload["tags"].items()
            },
            created_at=created_at,
        )
