"""Scanner preset rules: which hits pass, and how they are ranked."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from market_hub.core.config import ScannerConfig
from market_hub.core.exceptions import ClientRequestError
from market_hub.core.models import ScanHit, ScannerPreset


@dataclass(frozen=True)
class PresetRule:
    preset: ScannerPreset
    description: str
    matches: Callable[[ScanHit, ScannerConfig], bool]
    sort_key: Callable[[ScanHit], float]


def _rvol_above(hit: ScanHit, threshold: float) -> bool:
    return hit.rvol is not None and hit.rvol > threshold


PRESETS: dict[ScannerPreset, PresetRule] = {
    ScannerPreset.MOMENTUM: PresetRule(
        ScannerPreset.MOMENTUM,
        "Up strongly on above-average volume",
        lambda h, c: h.change_percent > c.momentum_change_pct and _rvol_above(h, c.momentum_rvol),
        lambda h: -h.change_percent,
    ),
    ScannerPreset.VOLUME: PresetRule(
        ScannerPreset.VOLUME,
        "Trading at a multiple of average volume",
        lambda h, c: _rvol_above(h, c.volume_rvol),
        lambda h: -(h.rvol or 0.0),
    ),
    ScannerPreset.OVERSOLD: PresetRule(
        ScannerPreset.OVERSOLD,
        "Down more than the oversold threshold",
        lambda h, c: h.change_percent < c.oversold_change_pct,
        lambda h: h.change_percent,
    ),
    ScannerPreset.BREAKOUT: PresetRule(
        ScannerPreset.BREAKOUT,
        "Large move in either direction on heavy volume",
        lambda h, c: abs(h.change_percent) > c.breakout_change_pct
        and _rvol_above(h, c.breakout_rvol),
        lambda h: -abs(h.change_percent),
    ),
    ScannerPreset.GAP: PresetRule(
        ScannerPreset.GAP,
        "Gapped away from the previous close",
        lambda h, c: abs(h.gap_percent) > c.gap_pct,
        lambda h: -abs(h.gap_percent),
    ),
    ScannerPreset.NEWS: PresetRule(
        ScannerPreset.NEWS,
        "Mentioned in recent news",
        lambda h, c: h.news_count > 0,
        lambda h: -h.news_count,
    ),
}


def get_rule(preset: str | ScannerPreset) -> PresetRule:
    try:
        return PRESETS[ScannerPreset(preset)]
    except ValueError:
        raise ClientRequestError(
            f"Unknown scanner preset: {preset!r}",
            context={"preset": preset, "valid": [p.value for p in ScannerPreset]},
        ) from None
