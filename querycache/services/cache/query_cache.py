"""
Query Cache Service

Domain helpers for catalog, availability, pricing and capacity queries, the
entity-change handlers that invalidate them, and cache warmup.

Every availability, pricing and capacity entry carries the ``product:<id>``
tag; catalog listings carry the single coarse ``catalog`` tag.
"""

import inspect
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Union

from opentelemetry import trace

from ...core.config import Settings, settings as default_settings
from ...domain.cache.domain_services import CacheDurationPolicy
from ...domain.cache.value_objects import CacheNamespace, CacheTag
from .cache_manager import CacheManager

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ProductId = Union[int, str]
Compute = Callable[[], Any]

# Post types whose save affects cached queries
PRODUCT_POST_TYPES = ("product", "wcefp_experience")


class QueryCache:
    """
    Namespaced query caching on top of a ``CacheManager``.
    """

    def __init__(
        self,
        cache_manager: CacheManager,
        durations: Optional[CacheDurationPolicy] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.cache = cache_manager
        self.durations = durations or CacheDurationPolicy(
            short=config.CACHE_DURATION_SHORT,
            medium=config.CACHE_DURATION_MEDIUM,
            long=config.CACHE_DURATION_LONG,
        )

    # Cached queries

    async def cache_catalog_query(self, args: Mapping[str, Any], compute: Compute) -> Any:
        """
        Cache an experiences catalog listing.

        Args:
            args: Full filter, sort and pagination arguments
            compute: Runs the catalog query on a miss
        """
        return await self.cache.get_cached(
            CacheNamespace.CATALOG.value,
            dict(args),
            tags=[CacheTag.catalog()],
            ttl=self.durations.catalog(args),
            compute=compute,
        )

    async def cache_availability_query(
        self, product_id: ProductId, date: Union[str, date], compute: Compute
    ) -> Any:
        """Cache the availability of one product on one date."""
        return await self.cache.get_cached(
            CacheNamespace.AVAILABILITY.value,
            {"product_id": product_id, "date": _date_key(date)},
            tags=[_product_tag(product_id)],
            ttl=self.durations.availability(),
            compute=compute,
        )

    async def cache_pricing_query(
        self, product_id: ProductId, context: Mapping[str, Any], compute: Compute
    ) -> Any:
        """
        Cache a price calculation.

        The whole context (date, ticket composition, extras) is part of the
        key because the price depends on all of it.
        """
        return await self.cache.get_cached(
            CacheNamespace.PRICING.value,
            {"product_id": product_id, "context": dict(context)},
            tags=[_product_tag(product_id)],
            ttl=self.durations.pricing(context),
            compute=compute,
        )

    async def cache_capacity_query(
        self, product_id: ProductId, date_filter: Optional[str], compute: Compute
    ) -> Any:
        """Cache capacity utilization of a product, optionally for one date."""
        return await self.cache.get_cached(
            CacheNamespace.CAPACITY.value,
            {"product_id": product_id, "date_filter": date_filter or "all"},
            tags=[_product_tag(product_id)],
            ttl=self.durations.capacity(),
            compute=compute,
        )

    # Invalidation handlers

    async def on_product_saved(
        self, product_id: ProductId, post_type: Optional[str] = None
    ) -> Dict[str, int]:
        """
        Invalidate a product's queries and every catalog listing.

        Saves of unrelated post types and unusable product IDs are ignored.
        """
        if post_type is not None and post_type not in PRODUCT_POST_TYPES:
            return {}

        tag = _checked_product_tag(product_id)
        if tag is None:
            return {}

        versions = await self.cache.invalidate_tags([tag, CacheTag.catalog()])
        logger.info(
            "Product cache invalidated",
            extra={"product_id": str(product_id), "versions": versions},
        )
        return versions

    async def on_order_changed(self, product_ids: Iterable[ProductId]) -> Dict[str, int]:
        """Invalidate the queries of every product in an order."""
        tags = {_checked_product_tag(product_id) for product_id in product_ids}
        tags.discard(None)
        if not tags:
            return {}

        versions = await self.cache.invalidate_tags(tags)
        logger.info("Order products cache invalidated", extra={"versions": versions})
        return versions

    async def on_stock_hold_created(
        self,
        occurrence_id: Any,
        resolve_product: Callable[[Any], Union[Optional[ProductId], Awaitable[Optional[ProductId]]]],
    ) -> Dict[str, int]:
        """
        Invalidate the product behind a held occurrence.

        Args:
            occurrence_id: Occurrence the hold was placed on
            resolve_product: Maps an occurrence ID to its product ID (sync or async)
        """
        product_id = resolve_product(occurrence_id)
        if inspect.isawaitable(product_id):
            product_id = await product_id

        if not product_id:
            logger.debug(f"No product for occurrence {occurrence_id}, nothing to invalidate")
            return {}

        tag = _checked_product_tag(product_id)
        if tag is None:
            return {}
        return {tag: await self.cache.invalidate_tag(tag)}

    # Warmup

    async def warmup(
        self,
        product_ids: Iterable[ProductId],
        compute_availability: Callable[[ProductId, str], Any],
        days: int = 7,
        start: Optional[date] = None,
        popular_products: Optional[Callable[[], Iterable[ProductId]]] = None,
    ) -> int:
        """
        Prime availability entries for the next ``days`` days.

        Args:
            product_ids: Products to warm; when empty, ``popular_products`` is asked
            compute_availability: Called as ``compute_availability(product_id, date)``
            days: Number of consecutive days from ``start``
            start: First date, today (UTC) by default
            popular_products: Fallback provider of product IDs

        Returns:
            Number of entries looked up or primed
        """
        products = list(product_ids or [])
        if not products and popular_products is not None:
            products = list(popular_products())

        start = start or datetime.now(timezone.utc).date()
        warmed = 0

        with tracer.start_as_current_span("query_cache.warmup") as span:
            span.set_attribute("products", len(products))
            started_at = datetime.now(timezone.utc)

            for product_id in products:
                for offset in range(days):
                    day = (start + timedelta(days=offset)).isoformat()
                    await self.cache_availability_query(
                        product_id,
                        day,
                        lambda product_id=product_id, day=day: compute_availability(
                            product_id, day
                        ),
                    )
                    warmed += 1

            duration_ms = (datetime.now(timezone.utc) - started_at).total_seconds() * 1000
            logger.info(
                "Cache warmup completed",
                extra={
                    "warmed_entries": warmed,
                    "products": len(products),
                    "duration_ms": round(duration_ms, 2),
                },
            )
        return warmed

    def log_cache_stats(self) -> Optional[Dict[str, Any]]:
        """Log cache statistics when there was lookup activity."""
        return self.cache.stats.log_summary()


def _date_key(value: Union[str, date]) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _product_tag(product_id: ProductId) -> str:
    # Validated by the cache manager, which rejects bad tags with the default
    return f"product:{product_id}"


def _checked_product_tag(product_id: ProductId) -> Optional[str]:
    try:
        return CacheTag.product(product_id).value
    except ValueError as e:
        logger.warning(f"Ignoring invalidation for product {product_id!r}: {e}")
        return None
