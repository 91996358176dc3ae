"""
PriceIndexResolver — escalation ratios between two months of a monthly index table.
"""
import logging
from typing import Iterable, Optional

from precast_estimator.services.errors import MissingPriceIndex
from precast_estimator.services.quote_types import MonthKey, PriceIndexTable

logger = logging.getLogger("precast-price-index")


class PriceIndexResolver:
    """Resolves index values and ratios against one immutable table snapshot."""

    def __init__(self, table: PriceIndexTable) -> None:
        self.table = table

    def value(self, series: str, month: MonthKey) -> float:
        """Index value of ``series`` at ``month``; no interpolation, no fallback."""
        s = self.table.get(series)
        value = s.value_at(month) if s is not None else None
        if value is None:
            raise MissingPriceIndex(series, month[0], month[1])
        return value

    def ratio(self, series: str, base: MonthKey, target: MonthKey) -> float:
        """index(target) / index(base)."""
        return self.value(series, target) / self.value(series, base)

    def latest_common_month(self, series_names: Iterable[str]) -> Optional[MonthKey]:
        """
        Most recent month present in every named series.

        Returns None when the series share no month at all; a missing series
        raises MissingPriceIndex against month 0 so the caller sees its name.
        """
        common = None
        for name in series_names:
            s = self.table.get(name)
            if s is None:
                raise MissingPriceIndex(name, 0, 0)
            months = {p.key for p in s.points}
            common = months if common is None else common & months
        if not common:
            return None
        latest = max(common)
        logger.debug("latest common index month %04d-%02d", latest[0], latest[1])
        return latest
