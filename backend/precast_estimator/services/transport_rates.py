"""
TransportRateLookup — (length category, billed distance, trips) -> transport charge.

Tariffs are tabulated per length category at discrete distances. A billed
distance with no exact entry uses the next-higher tabulated distance; the
table is never extrapolated and never borrows another category's prices.
"""
import bisect
import logging
from typing import Dict, List, Sequence, Tuple

from precast_estimator.services.distance_billing import billed_distance
from precast_estimator.services.errors import ConfigurationError, MissingTariff
from precast_estimator.services.quote_types import LengthCategory, TariffEntry

logger = logging.getLogger("precast-transport-rates")


class TransportRateLookup:
    """Immutable per-call view over a list of TariffEntry rows."""

    def __init__(self, entries: Sequence[TariffEntry]) -> None:
        brackets: Dict[LengthCategory, List[Tuple[float, float]]] = {}
        seen = set()
        for e in entries:
            key = (e.length_category, float(e.distance_km))
            if key in seen:
                raise ConfigurationError(
                    f"Duplicate tariff for {e.length_category.value} at {e.distance_km:g} km"
                )
            if e.distance_km <= 0:
                raise ConfigurationError(f"Tariff distance must be > 0, got {e.distance_km:g}")
            if e.price_per_trip < 0:
                raise ConfigurationError(
                    f"Tariff for {e.length_category.value} at {e.distance_km:g} km is negative"
                )
            seen.add(key)
            brackets.setdefault(e.length_category, []).append((float(e.distance_km), float(e.price_per_trip)))
        self._distances: Dict[LengthCategory, List[float]] = {}
        self._prices: Dict[LengthCategory, List[float]] = {}
        for category, rows in brackets.items():
            rows.sort()
            self._distances[category] = [d for d, _ in rows]
            self._prices[category] = [p for _, p in rows]

    def tariff(self, category: LengthCategory, billed_km: float) -> float:
        """Price per trip for ``category`` at ``billed_km`` (0 km costs nothing)."""
        if billed_km == 0:
            return 0.0
        distances = self._distances.get(category)
        if not distances:
            raise MissingTariff(category.value, billed_km, "no brackets for category")
        pos = bisect.bisect_left(distances, billed_km)
        if pos >= len(distances):
            raise MissingTariff(
                category.value, billed_km, f"largest bracket is {distances[-1]:g} km"
            )
        if distances[pos] != billed_km:
            logger.debug(
                "no %s bracket at %g km, using next-higher %g km",
                category.value, billed_km, distances[pos],
            )
        return self._prices[category][pos]

    def rate(self, category: LengthCategory, billed_km: float, trips: int) -> float:
        """tariff(category, billed_km) x trips."""
        if trips <= 0:
            return 0.0
        return self.tariff(category, billed_km) * trips

    def rate_for_distance(self, category: LengthCategory, real_km: float, trips: int) -> float:
        """Same as ``rate`` but bills the real route distance first."""
        return self.rate(category, billed_distance(real_km), trips)
