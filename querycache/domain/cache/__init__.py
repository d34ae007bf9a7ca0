"""
Cache Domain Module

Value objects, the cache entry entity, repository contracts, exceptions and
pure domain services for the query cache.
"""
