"""API response schemas (Pydantic v2).

Every endpoint answers with ``Envelope``. Payload wrappers use camelCase
keys on the wire; the domain models inside them keep their field names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from market_hub.core.models import (
    Candle,
    ErrorInfo,
    NewsItem,
    ProviderHealth,
    ScanHit,
    SymbolRecord,
)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -- Envelope --


class Envelope(_Payload):
    """Common response envelope. ``stale`` is only present when true."""

    success: bool = True
    data: Any = None
    errors: list[ErrorInfo] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stale: bool | None = None

    def render(self) -> dict[str, Any]:
        body = self.model_dump(mode="json", by_alias=True)
        body["data"] = jsonable_encoder(self.data, by_alias=True)
        if not self.stale:
            body.pop("stale", None)
        return body


def envelope(
    data: Any = None,
    errors: Iterable[ErrorInfo] = (),
    stale: bool = False,
    success: bool | None = None,
) -> dict[str, Any]:
    """Build a rendered envelope.

    ``success`` defaults to true unless the call produced errors and no data.
    """
    errors = list(errors)
    if success is None:
        success = not errors or bool(data)
    return Envelope(success=success, data=data, errors=errors, stale=stale or None).render()


# -- Payloads --


class NewsData(_Payload):
    news: list[NewsItem]
    counts: dict[str, int]


class OhlcData(_Payload):
    symbol: str
    interval: str
    candles: list[Candle]


class SymbolsData(_Payload):
    symbols: list[SymbolRecord]
    total: int
    last_update: datetime | None = None


class ScannerData(_Payload):
    preset: str
    stocks: list[ScanHit]
    universe_size: int
    total_processed: int


class UniverseStatus(_Payload):
    size: int
    loaded_at: datetime | None = None


class HealthData(_Payload):
    status: str = "ok"
    version: str
    providers: dict[str, ProviderHealth]
    universe: UniverseStatus
    cache: dict[str, Any] = Field(default_factory=dict)


class ResolveData(_Payload):
    ok: bool
    final: str
