"""
Cache Domain Services

Pure domain logic: key fingerprinting and TTL selection for the query
namespaces.
"""

import hashlib
import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .exceptions import InvalidCacheInputError
from .value_objects import TTL, CacheKey, validate_namespace

logger = logging.getLogger(__name__)


class KeyFingerprintService:
    """
    Derives stable cache keys from a namespace and a query descriptor.

    Mappings are serialized with sorted keys so argument order does not
    matter; sequences keep their order. Tag versions are appended as sorted
    ``tag:version`` pairs, so a bumped tag yields an unrelated key.
    """

    def __init__(self, prefix: str):
        if not isinstance(prefix, str) or not prefix:
            raise InvalidCacheInputError("Key prefix cannot be empty", field="prefix")
        self.prefix = prefix

    @staticmethod
    def canonicalize(descriptor: Any) -> str:
        """
        Canonical JSON form of a descriptor.

        Raises:
            InvalidCacheInputError: If the descriptor cannot be serialized
        """
        try:
            return json.dumps(
                descriptor,
                sort_keys=True,
                separators=(",", ":"),
                default=str,
                ensure_ascii=False,
            )
        except (TypeError, ValueError) as e:
            raise InvalidCacheInputError(
                f"Query descriptor is not serializable: {e}", field="descriptor"
            ) from e

    def fingerprint(
        self,
        namespace: str,
        descriptor: Any,
        tag_versions: Optional[Mapping[str, int]] = None,
    ) -> CacheKey:
        """
        Build the cache key for a query.

        Args:
            namespace: Query namespace (e.g. ``availability``)
            descriptor: Query arguments
            tag_versions: Current versions of the query's tags

        Returns:
            Cache key ``<prefix>:<namespace>:<sha256>``

        Raises:
            InvalidCacheInputError: If namespace or descriptor is invalid
        """
        try:
            namespace = validate_namespace(namespace)
        except ValueError as e:
            raise InvalidCacheInputError(str(e), field="namespace") from e

        parts = [namespace, self.canonicalize(descriptor)]
        for tag in sorted(tag_versions or {}):
            parts.append(f"{tag}:{int(tag_versions[tag])}")

        digest = hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()
        return CacheKey.build(self.prefix, namespace, digest)


class CacheDurationPolicy:
    """TTL rules for the query namespaces."""

    CATALOG_FILTERS = (
        "category",
        "location",
        "difficulty",
        "duration",
        "date_from",
        "search",
    )

    def __init__(self, short: int, medium: int, long: int):
        self.short = TTL(short)
        self.medium = TTL(medium)
        self.long = TTL(long)

    def catalog(self, args: Mapping[str, Any]) -> TTL:
        """More filters means a narrower result set and a shorter TTL."""
        complexity = sum(1 for name in self.CATALOG_FILTERS if args.get(name))

        if complexity >= 3:
            return self.short
        elif complexity >= 1:
            return self.medium
        return self.long

    def pricing(self, context: Mapping[str, Any], now: Optional[datetime] = None) -> TTL:
        """Prices for near dates change faster than prices for far ones."""
        event_date = _parse_date(context.get("date")) if context else None
        if event_date is None:
            return self.long

        now = now or datetime.now(timezone.utc)
        days_ahead = (event_date - now).total_seconds() / 86400

        if days_ahead <= 1:
            return self.short
        elif days_ahead <= 7:
            return self.medium
        return self.long

    def availability(self) -> TTL:
        return self.short

    def capacity(self) -> TTL:
        return self.short

    def as_dict(self) -> Dict[str, int]:
        return {
            "short": self.short.seconds,
            "medium": self.medium.seconds,
            "long": self.long.seconds,
        }


def _parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO date or datetime into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            logger.debug(f"Unparseable pricing date: {value!r}")
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
