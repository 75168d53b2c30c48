"""Symbol universe, alias derivation and ticker resolution."""

from market_hub.symbols.aliases import derive_aliases, normalize, strip_legal_suffix
from market_hub.symbols.resolver import TickerResolver, resolve
from market_hub.symbols.universe import SymbolUniverse, UniverseSnapshot, build_snapshot

__all__ = [
    "SymbolUniverse",
    "TickerResolver",
    "UniverseSnapshot",
    "build_snapshot",
    "derive_aliases",
    "normalize",
    "resolve",
    "strip_legal_suffix",
]
