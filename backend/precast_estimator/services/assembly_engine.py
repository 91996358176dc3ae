"""
AssemblyCostCalculator — on-site erection cost.

  assembly = per_ton_rate x tonnage
           + crew_day_rate x assembly_days
           + crane_day_rate x (assembly_days + crane_extra_days)
           + crane_relocation_rate x crane_relocation_km

Extra crane days only count when the job uses an extra crane. The per-ton
term needs a known tonnage; lines without weight data contribute nothing.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from precast_estimator import config
from precast_estimator.services.quote_types import AssemblyRates, CommercialParameters

logger = logging.getLogger("precast-assembly")


@dataclass(frozen=True)
class AssemblyBreakdown:
    enabled: bool
    tonnage_tn: float = 0.0
    per_ton_cost: float = 0.0
    crew_cost: float = 0.0
    crane_days: float = 0.0
    crane_cost: float = 0.0
    relocation_cost: float = 0.0

    @property
    def total(self) -> float:
        return self.per_ton_cost + self.crew_cost + self.crane_cost + self.relocation_cost

    def as_dict(self) -> Dict[str, object]:
        m = config.MONEY_DECIMALS
        return {
            "enabled": self.enabled,
            "total": round(self.total, m),
            "breakdown": {
                "tonnage_tn": round(self.tonnage_tn, config.WEIGHT_DECIMALS),
                "per_ton": round(self.per_ton_cost, m),
                "crew": round(self.crew_cost, m),
                "crane_days": self.crane_days,
                "crane": round(self.crane_cost, m),
                "crane_relocation": round(self.relocation_cost, m),
            },
        }


class AssemblyCostCalculator:
    def __init__(self, rates: AssemblyRates) -> None:
        self.rates = rates

    def calculate(self, params: CommercialParameters, tonnage_tn: Optional[float]) -> AssemblyBreakdown:
        if not params.enable_assembly:
            return AssemblyBreakdown(enabled=False)

        tonnage = tonnage_tn or 0.0
        crane_days = params.assembly_days
        if params.uses_extra_crane:
            crane_days += params.crane_extra_days

        breakdown = AssemblyBreakdown(
            enabled=True,
            tonnage_tn=tonnage,
            per_ton_cost=self.rates.per_ton_rate * tonnage,
            crew_cost=self.rates.crew_day_rate * params.assembly_days,
            crane_days=crane_days,
            crane_cost=self.rates.crane_day_rate * crane_days,
            relocation_cost=self.rates.crane_relocation_rate * params.crane_relocation_km,
        )
        logger.debug(
            "assembly: %.3f t, %g crew days, %g crane days -> %.2f",
            tonnage, params.assembly_days, crane_days, breakdown.total,
        )
        return breakdown
