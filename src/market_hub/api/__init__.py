"""HTTP API: FastAPI application, routes and response schemas."""

from market_hub.api.app import create_app

__all__ = ["create_app"]
