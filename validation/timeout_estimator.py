"""
Timeout Estimator

Derives a per-layer execution budget from a heuristic sublayer count.

Formula: min(BASE + sublayer_count * PER_SUBLAYER, CEILING)

Examples (checkpoint profile, 60s + 30s per sublayer, 240s ceiling):
- 1 sublayer:  60s + 30s  = 90s
- 5 sublayers: 60s + 150s = 210s
- 20 sublayers: 660s, capped to 240s

Sublayer counts are an approximation: a small table of layers known to
carry many sublayers, falling back to a per-kind default otherwise.
"""

from typing import Dict, NamedTuple, Optional

import config
from shared_schema import LayerConfig, LayerKind


class TimeoutProfile(NamedTuple):
    base_ms: int
    per_sublayer_ms: int


TIMEOUT_PROFILES = {
    "standalone": TimeoutProfile(base_ms=90000, per_sublayer_ms=30000),
    "checkpoint": TimeoutProfile(base_ms=60000, per_sublayer_ms=30000),
    "quick": TimeoutProfile(base_ms=60000, per_sublayer_ms=5000),
}

DEFAULT_CEILING_MS = 240000

# Layers known to expose more sublayers than the per-kind default
KNOWN_SUBLAYER_COUNTS = {
    "coastal-and-marine": 20,
    "jldp-fire-perimeters": 20,
    "california-historic-fire-perimeters": 3,
    "calfire-fire-hazard-severity-zones-2023": 1,
    "calfire-frap-fire-threat-2019": 1,
    "cattle-guards": 1,
    "cattle-pastures": 1,
    "minor-watersheds": 1,
}

# Most Feature Services have 1-20 sublayers; Image Services have 1
DEFAULT_SUBLAYERS_BY_KIND = {
    LayerKind.FEATURE_SERVICE: 5,
    LayerKind.IMAGE_SERVICE: 1,
}


class TimeoutEstimator:
    """Pure, deterministic budget calculator"""

    def __init__(self, base_ms: int, per_sublayer_ms: int, ceiling_ms: int = DEFAULT_CEILING_MS,
                 known_sublayers: Optional[Dict[str, int]] = None):
        if base_ms < 0 or per_sublayer_ms < 0 or ceiling_ms < 0:
            raise ValueError("Timeout constants must be non-negative")

        self.base_ms = base_ms
        self.per_sublayer_ms = per_sublayer_ms
        self.ceiling_ms = ceiling_ms
        self.known_sublayers = dict(KNOWN_SUBLAYER_COUNTS if known_sublayers is None else known_sublayers)

    @classmethod
    def from_profile(cls, name: str, ceiling_ms: int = DEFAULT_CEILING_MS,
                     base_ms: Optional[int] = None, per_sublayer_ms: Optional[int] = None) -> "TimeoutEstimator":
        """Build from a named profile, optionally overriding either constant"""
        if name not in TIMEOUT_PROFILES:
            raise ValueError(f"Unknown timeout profile '{name}'. Valid profiles: {sorted(TIMEOUT_PROFILES)}")

        profile = TIMEOUT_PROFILES[name]
        return cls(
            base_ms=profile.base_ms if base_ms is None else base_ms,
            per_sublayer_ms=profile.per_sublayer_ms if per_sublayer_ms is None else per_sublayer_ms,
            ceiling_ms=ceiling_ms,
        )

    @classmethod
    def from_config(cls) -> "TimeoutEstimator":
        return cls.from_profile(
            config.TIMEOUT_PROFILE,
            ceiling_ms=config.TIMEOUT_CEILING_MS,
            base_ms=int(config.TIMEOUT_BASE_MS) if config.TIMEOUT_BASE_MS else None,
            per_sublayer_ms=int(config.TIMEOUT_PER_SUBLAYER_MS) if config.TIMEOUT_PER_SUBLAYER_MS else None,
        )

    def estimate(self, sublayer_count: int) -> int:
        """Budget in milliseconds; the ceiling is applied after the addition"""
        if sublayer_count < 0:
            raise ValueError(f"Sublayer count must be non-negative, got {sublayer_count}")

        budget = self.base_ms + sublayer_count * self.per_sublayer_ms
        return min(budget, self.ceiling_ms)

    def estimate_sublayers(self, layer: LayerConfig) -> int:
        if layer.id in self.known_sublayers:
            return self.known_sublayers[layer.id]
        return DEFAULT_SUBLAYERS_BY_KIND[LayerKind(layer.layer_kind)]

    def estimate_for_layer(self, layer: LayerConfig) -> int:
        return self.estimate(self.estimate_sublayers(layer))

    def describe(self, sublayer_count: int) -> str:
        """Human-readable budget, e.g. '1.5min (1 sublayer)'"""
        minutes = round(self.estimate(sublayer_count) / 60000, 1)
        plural = "" if sublayer_count == 1 else "s"
        return f"{minutes}min ({sublayer_count} sublayer{plural})"
