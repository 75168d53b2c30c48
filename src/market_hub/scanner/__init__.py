"""Market scanner: preset rules and the engine that applies them."""

from market_hub.scanner.engine import ScannerEngine
from market_hub.scanner.presets import PRESETS, PresetRule, get_rule

__all__ = [
    "PRESETS",
    "PresetRule",
    "ScannerEngine",
    "get_rule",
]
