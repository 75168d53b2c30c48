"""market-hub: read-only market data aggregation service."""

__version__ = "0.1.0"
