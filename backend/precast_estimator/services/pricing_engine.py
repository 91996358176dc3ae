"""
Pricing pipeline — per-line material cost for precast pieces.

Three layers, always applied in this order:

  1. MaterialCostLayer           raw cost = measure x unit price
  2. AdjustmentLayer             category % -> commercial % -> global multiplier
  3. PolynomialEscalationLayer   x sum(weight_i x index_i(target) / index_i(base))

Also hosts BomPriceCalculator, which derives a base price per unit of
measure from a piece's bill of materials and plant process parameters.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from precast_estimator import config
from precast_estimator.services.errors import (
    ConfigurationError,
    InvalidLineItem,
    ValidationError,
    ValidationIssue,
)
from precast_estimator.services.price_index import PriceIndexResolver
from precast_estimator.services.quote_types import (
    AdjustmentCategory,
    AdjustmentScale,
    MonthKey,
    PieceLineItem,
    PolynomialFormula,
    UnitOfMeasure,
)

logger = logging.getLogger("precast-pricing")


@dataclass(frozen=True)
class LinePricing:
    line_index: int
    description: str
    unit: UnitOfMeasure
    adjustment_category: AdjustmentCategory
    quantity: float
    measure: float
    weight_tn: Optional[float]
    raw_cost: float
    adjusted_cost: float
    escalation_factor: float
    unit_cost: float
    total_cost: float

    def as_dict(self) -> Dict[str, object]:
        m, w = config.MONEY_DECIMALS, config.WEIGHT_DECIMALS
        return {
            "line_index": self.line_index,
            "description": self.description,
            "unit": self.unit.value,
            "adjustment_category": self.adjustment_category.value,
            "quantity": self.quantity,
            "measure": round(self.measure, 3),
            "weight_tn": round(self.weight_tn, w) if self.weight_tn is not None else None,
            "raw_cost": round(self.raw_cost, m),
            "adjusted_cost": round(self.adjusted_cost, m),
            "escalation_factor": round(self.escalation_factor, 6),
            "unit_cost": round(self.unit_cost, m),
            "total_cost": round(self.total_cost, m),
        }


# ---------------------------------------------------------------------------
# Layer 1
# ---------------------------------------------------------------------------

class MaterialCostLayer:
    """Raw cost from geometry-derived measure and unit price."""

    def raw_cost(self, item: PieceLineItem) -> float:
        # UND lines have measure == quantity
        return item.measure * item.unit_price


# ---------------------------------------------------------------------------
# Layer 2
# ---------------------------------------------------------------------------

class AdjustmentLayer:
    """
    Applies an AdjustmentScale in the fixed order category -> commercial -> multiplier.

    Percentages are signed fractions: -0.15 is a 15 % discount.
    """

    def __init__(self, scale: AdjustmentScale) -> None:
        self.scale = scale

    def apply(self, amount: float, category: AdjustmentCategory) -> float:
        amount = amount * (1.0 + self.scale.pct_for(category))
        amount = amount * (1.0 + self.scale.commercial_discount_pct)
        amount = amount * self.scale.global_multiplier
        return amount


# ---------------------------------------------------------------------------
# Layer 3
# ---------------------------------------------------------------------------

class PolynomialEscalationLayer:
    """Evaluates weighted index formulas between a base and a target month."""

    def __init__(self, resolver: PriceIndexResolver) -> None:
        self.resolver = resolver

    def factor(self, formula: PolynomialFormula, base: MonthKey, target: MonthKey) -> float:
        return sum(
            term.weight * self.resolver.ratio(term.series, base, target)
            for term in formula.terms
        )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class PricingEngine:
    """
    Runs the three layers for one calculation.

    One instance is built per quotation from that quotation's snapshots;
    escalation factors are memoised per category for the instance lifetime only.
    """

    def __init__(
        self,
        resolver: PriceIndexResolver,
        adjustments: AdjustmentScale,
        formulas: Mapping[AdjustmentCategory, PolynomialFormula],
        base_month: MonthKey,
        target_month: MonthKey,
    ) -> None:
        missing = [c.value for c in AdjustmentCategory if c not in formulas]
        if missing:
            raise ConfigurationError(f"No escalation formula for categories {missing}")
        self.material_layer = MaterialCostLayer()
        self.adjustment_layer = AdjustmentLayer(adjustments)
        self.escalation_layer = PolynomialEscalationLayer(resolver)
        self.formulas = formulas
        self.base_month = base_month
        self.target_month = target_month
        self._factors: Dict[AdjustmentCategory, float] = {}

    def escalation_factor(self, category: AdjustmentCategory) -> float:
        if category not in self._factors:
            self._factors[category] = self.escalation_layer.factor(
                self.formulas[category], self.base_month, self.target_month
            )
        return self._factors[category]

    def price_line(self, index: int, item: PieceLineItem) -> LinePricing:
        if item.quantity <= 0 or item.unit_price <= 0:
            raise InvalidLineItem([
                ValidationIssue(f"items[{index}]", "must_be_positive",
                                "quantity and unit_price must be > 0")
            ])
        measure = item.measure
        raw = self.material_layer.raw_cost(item)
        adjusted = self.adjustment_layer.apply(raw, item.adjustment_category)
        factor = self.escalation_factor(item.adjustment_category)
        unit_cost = self.adjustment_layer.apply(item.unit_price, item.adjustment_category) * factor
        total = unit_cost * measure
        logger.debug("line %d priced: raw=%.2f factor=%.6f total=%.2f", index, raw, factor, total)
        return LinePricing(
            line_index=index,
            description=item.description,
            unit=item.unit,
            adjustment_category=item.adjustment_category,
            quantity=item.quantity,
            measure=measure,
            weight_tn=item.weight_tn,
            raw_cost=raw,
            adjusted_cost=adjusted,
            escalation_factor=factor,
            unit_cost=unit_cost,
            total_cost=total,
        )

    def price_lines(self, items: Sequence[PieceLineItem]) -> List[LinePricing]:
        return [self.price_line(i, item) for i, item in enumerate(items)]


# ---------------------------------------------------------------------------
# BOM base price
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BomComponent:
    material_id: int
    quantity_per_unit: float
    scrap_pct: float = 0.0          # 0-100
    material_name: str = ""
    unit: str = ""


@dataclass(frozen=True)
class ProcessParameters:
    curing_energy_per_tn: float = 0.0
    plant_overhead_per_tn: float = 0.0
    company_overhead_per_tn: float = 0.0
    profit_per_tn: float = 0.0
    engineering_per_tn: float = 0.0
    hour_price: float = 0.0
    hours_per_tn_steel: float = 0.0
    hours_per_m3_concrete: float = 0.0


@dataclass(frozen=True)
class PieceTechData:
    unit: UnitOfMeasure = UnitOfMeasure.UND
    weight_tn_per_unit: float = 0.0
    steel_kg_per_unit: float = 0.0
    concrete_m3_per_unit: float = 0.0


@dataclass(frozen=True)
class BasePriceResult:
    materials: float
    process_per_tn: float
    concrete_labour: float
    steel_labour: float
    total: float
    estimated: bool

    def as_dict(self) -> Dict[str, object]:
        m = config.MONEY_DECIMALS
        return {
            "materials": round(self.materials, m),
            "process": {
                "per_tn": round(self.process_per_tn, m),
                "concrete_labour": round(self.concrete_labour, m),
                "steel_labour": round(self.steel_labour, m),
            },
            "total": round(self.total, m),
            "estimated": self.estimated,
        }


class BomPriceCalculator:
    """Base price per unit of measure from bill of materials plus process."""

    def base_price_per_unit(
        self,
        bom: Sequence[BomComponent],
        material_prices: Mapping[int, float],
        process: ProcessParameters,
        tech: PieceTechData,
        family_alpha: Optional[float] = None,
    ) -> BasePriceResult:
        """
        Args:
            bom:             sub-materials consumed per unit of measure.
            material_prices: current price per material id for the target month.
            process:         plant process parameters (per tonne / per hour).
            tech:            per-unit weight, steel and concrete content.
            family_alpha:    materials value used when the piece has no BOM.

        Raises ValidationError listing every BOM row whose material has no price.
        """
        issues = [
            ValidationIssue(f"bom[{i}].material_id", "price:missing",
                            f"no price for material {c.material_id}")
            for i, c in enumerate(bom)
            if c.material_id not in material_prices
        ]
        if issues:
            raise ValidationError(issues)

        if bom:
            materials = sum(
                c.quantity_per_unit * (1.0 + c.scrap_pct / 100.0) * material_prices[c.material_id]
                for c in bom
            )
        else:
            materials = family_alpha or 0.0

        per_tn = (
            process.curing_energy_per_tn
            + process.plant_overhead_per_tn
            + process.company_overhead_per_tn
            + process.profit_per_tn
            + process.engineering_per_tn
        ) * tech.weight_tn_per_unit
        concrete = process.hours_per_m3_concrete * process.hour_price * tech.concrete_m3_per_unit
        steel = process.hours_per_tn_steel * process.hour_price * (tech.steel_kg_per_unit / 1000.0)

        return BasePriceResult(
            materials=materials,
            process_per_tn=per_tn,
            concrete_labour=concrete,
            steel_labour=steel,
            total=materials + per_tn + concrete + steel,
            estimated=not bom,
        )
