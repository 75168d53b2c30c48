"""Dependency injection for FastAPI routes."""

from __future__ import annotations

from fastapi import Request

from market_hub.core.config import HubConfig
from market_hub.services import Services


def get_services(request: Request) -> Services:
    """Dependency: retrieve the service graph built during lifespan."""
    return request.app.state.services


def get_config(request: Request) -> HubConfig:
    """Dependency: retrieve config."""
    return request.app.state.services.config
