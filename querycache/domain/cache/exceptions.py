"""
Cache Domain Exceptions

Exceptions raised by the query cache. Operational failures of storage tiers
never surface as exceptions; these cover invalid input and registry problems.
"""

from typing import Any, Dict, Optional


class CacheException(Exception):
    """Base exception for cache errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidCacheInputError(CacheException):
    """Raised when namespace, descriptor, tags or ttl are unusable."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {}
        if field:
            details["field"] = field

        super().__init__(
            message=message, error_code="CACHE_INVALID_INPUT", details=details
        )


class TagRegistryUnavailableError(CacheException):
    """Raised when the tag version registry cannot be reached."""

    def __init__(
        self,
        operation: str,
        tag: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {"operation": operation}
        if tag:
            details["tag"] = tag
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__

        super().__init__(
            message=f"Tag version registry unavailable during '{operation}'",
            error_code="CACHE_TAG_REGISTRY_UNAVAILABLE",
            details=details,
        )
        if original_error:
            self.__cause__ = original_error


class TagVersionRegressionError(CacheException):
    """
    Raised when a tag version moves backwards.

    This means invalidations were lost (for example the registry store was
    wiped) and stale entries could become reachable again.
    """

    def __init__(self, tag: str, observed_version: int, reported_version: int):
        super().__init__(
            message=(
                f"Tag version for '{tag}' went backwards: "
                f"observed {observed_version}, registry reported {reported_version}"
            ),
            error_code="CACHE_TAG_VERSION_REGRESSION",
            details={
                "tag": tag,
                "observed_version": observed_version,
                "reported_version": reported_version,
            },
        )
