"""News canonicalization, deduplication and aggregation.

Import ``market_hub.news.aggregator`` or ``market_hub.news.canonical``
directly; adapters depend on ``canonical`` and the aggregator depends on
the gateway, so this package does not re-export either.
"""
