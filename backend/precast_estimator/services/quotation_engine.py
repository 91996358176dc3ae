"""
QuotationAggregator — one synchronous pass from a request to quotation totals.

  validate (every issue collected) -> price every line -> pack trucks once
  -> assembly -> complementary works -> totals

  base        = materials + transport + assembly + bucket_1 + bucket_2
  grand_total = base x (1 + general_expenses_pct)

Nothing is cached between calls; every table arrives in the request.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from precast_estimator import config
from precast_estimator.services.assembly_engine import AssemblyBreakdown, AssemblyCostCalculator
from precast_estimator.services.errors import (
    CalculationTimeout,
    InvalidLineItem,
    QuoteEngineError,
    ValidationError,
    ValidationIssue,
)
from precast_estimator.services.freight_optimizer import FreightOptimizer, FreightPlan
from precast_estimator.services.perf_monitor import timed, tracker
from precast_estimator.services.price_index import PriceIndexResolver
from precast_estimator.services.pricing_engine import LinePricing, PricingEngine
from precast_estimator.services.quote_types import (
    AdjustmentCategory,
    AdjustmentScale,
    AssemblyRates,
    CommercialParameters,
    ComplementaryWorkLine,
    ComplementaryWorks,
    MonthKey,
    PackingRules,
    PieceLineItem,
    PolynomialFormula,
    PriceIndexTable,
    TariffEntry,
    TruckProfile,
    UnitOfMeasure,
    month_of,
)
from precast_estimator.services.transport_rates import TransportRateLookup

logger = logging.getLogger("precast-quotation")

# Issue codes that make a failure an InvalidLineItem rather than a generic ValidationError
_LINE_ITEM_CODES = {"must_be_positive"}


@dataclass(frozen=True)
class QuotationRequest:
    items: Tuple[PieceLineItem, ...]
    base_price_date: date
    price_indices: PriceIndexTable
    formulas: Mapping[AdjustmentCategory, PolynomialFormula]
    parameters: CommercialParameters
    adjustments: AdjustmentScale
    truck: TruckProfile
    assembly_rates: AssemblyRates
    transport_rate_table: Tuple[TariffEntry, ...]
    complementary_works: ComplementaryWorks = field(default_factory=ComplementaryWorks)
    target_price_date: Optional[date] = None
    packing_rules: Optional[PackingRules] = None
    quotation_id: Optional[str] = None


@dataclass(frozen=True)
class QuotationTotals:
    materials_subtotal: float
    transport_total: float
    assembly_total: float
    complementary_total: float
    general_expenses: float
    grand_total: float

    @property
    def base_total(self) -> float:
        return self.grand_total - self.general_expenses

    def as_dict(self) -> Dict[str, float]:
        m = config.MONEY_DECIMALS
        return {
            "materials_subtotal": round(self.materials_subtotal, m),
            "transport_total": round(self.transport_total, m),
            "assembly_total": round(self.assembly_total, m),
            "complementary_total": round(self.complementary_total, m),
            "subtotal_before_general_expenses": round(self.base_total, m),
            "general_expenses": round(self.general_expenses, m),
            "grand_total_before_tax": round(self.grand_total, m),
        }


@dataclass(frozen=True)
class QuotationResult:
    lines: Tuple[LinePricing, ...]
    freight: Optional[FreightPlan]
    assembly: AssemblyBreakdown
    complementary_bucket_1: float
    complementary_bucket_2: float
    totals: QuotationTotals
    base_month: MonthKey
    target_month: MonthKey
    general_expenses_pct: float
    quotation_id: Optional[str] = None

    def as_dict(self) -> Dict[str, object]:
        m = config.MONEY_DECIMALS
        if self.freight is not None:
            transport = self.freight.as_dict()
        else:
            transport = {
                "enabled": False, "total": 0.0, "trips": 0, "required_trips": 0,
                "billed_distance_km": 0.0, "real_weight_tn": 0.0,
                "false_weight_tn": 0.0, "per_truck_breakdown": [],
            }
        return {
            "quotation_id": self.quotation_id,
            "price_months": {
                "base": "%04d-%02d" % self.base_month,
                "target": "%04d-%02d" % self.target_month,
            },
            "materials": {
                "subtotal_raw": round(sum(line.raw_cost for line in self.lines), m),
                "subtotal_final": round(self.totals.materials_subtotal, m),
                "per_piece_breakdown": [line.as_dict() for line in self.lines],
            },
            "transport": transport,
            "assembly": self.assembly.as_dict(),
            "complementary": {
                "bucket_1": round(self.complementary_bucket_1, m),
                "bucket_2": round(self.complementary_bucket_2, m),
                "total": round(self.totals.complementary_total, m),
            },
            "general_expenses_pct": self.general_expenses_pct,
            "totals": self.totals.as_dict(),
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _positive(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def _non_negative(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value >= 0


def _item_issues(index: int, item: PieceLineItem, needs_weight: bool = False) -> List[ValidationIssue]:
    path = f"items[{index}]"
    issues: List[ValidationIssue] = []
    if not _positive(item.quantity):
        issues.append(ValidationIssue(f"{path}.quantity", "must_be_positive", f"got {item.quantity!r}"))
    if not _positive(item.unit_price):
        issues.append(ValidationIssue(f"{path}.unit_price", "must_be_positive", f"got {item.unit_price!r}"))
    if item.unit in (UnitOfMeasure.MT, UnitOfMeasure.M2) and not _positive(item.length_m):
        issues.append(ValidationIssue(f"{path}.length_m", "required_for_unit",
                                      f"{item.unit.value} lines need a length"))
    if item.unit is UnitOfMeasure.M2 and not _positive(item.width_m):
        issues.append(ValidationIssue(f"{path}.width_m", "required_for_unit", "M2 lines need a width"))
    for name in ("weight_per_unit_tn", "weight_per_piece_kg", "height_m"):
        value = getattr(item, name)
        if value is not None and not _non_negative(value):
            issues.append(ValidationIssue(f"{path}.{name}", "must_be_non_negative", f"got {value!r}"))
    if item.units_per_truck is not None and item.units_per_truck < 1:
        issues.append(ValidationIssue(f"{path}.units_per_truck", "must_be_at_least_1",
                                      f"got {item.units_per_truck!r}"))
    if needs_weight and not item.has_weight:
        issues.append(ValidationIssue(path, "weight_missing",
                                      "transport and assembly need the piece weight"))
    return issues


def _parameter_issues(p: CommercialParameters) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    if not _non_negative(p.general_expenses_pct):
        issues.append(ValidationIssue("parameters.general_expenses_pct", "must_be_non_negative",
                                      f"got {p.general_expenses_pct!r}"))
    if not _positive(p.truck_capacity_tn):
        issues.append(ValidationIssue("parameters.truck_capacity_tn", "must_be_positive",
                                      f"got {p.truck_capacity_tn!r}"))
    for name in ("distance_km", "assembly_days", "crane_extra_days", "crane_relocation_km"):
        value = getattr(p, name)
        if not _non_negative(value):
            issues.append(ValidationIssue(f"parameters.{name}", "must_be_non_negative", f"got {value!r}"))
    if p.trips_override is not None and not _non_negative(p.trips_override):
        issues.append(ValidationIssue("parameters.trips_override", "must_be_non_negative",
                                      f"got {p.trips_override!r}"))
    return issues


def _work_issues(bucket: str, lines: Sequence[ComplementaryWorkLine]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for i, line in enumerate(lines):
        path = f"complementary_works.{bucket}[{i}]"
        for name in ("quantity", "unit_price"):
            value = getattr(line, name)
            if not _non_negative(value):
                issues.append(ValidationIssue(f"{path}.{name}", "must_be_non_negative", f"got {value!r}"))
        if line.unit in (UnitOfMeasure.MT, UnitOfMeasure.M2) and not _positive(line.length_m):
            issues.append(ValidationIssue(f"{path}.length_m", "required_for_unit",
                                          f"{line.unit.value} lines need a length"))
        if line.unit is UnitOfMeasure.M2 and not _positive(line.width_m):
            issues.append(ValidationIssue(f"{path}.width_m", "required_for_unit", "M2 lines need a width"))
    return issues


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class _Deadline:
    """Monotonic deadline; ``check`` raises once it has passed."""

    def __init__(self, timeout_s: Optional[float], clock: Callable[[], float]) -> None:
        self.clock = clock
        self.expires_at = clock() + timeout_s if timeout_s else None
        self.validated_lines: List[int] = []

    def check(self, stage: str) -> None:
        if self.expires_at is not None and self.clock() >= self.expires_at:
            raise CalculationTimeout(self.validated_lines, stage)


class QuotationAggregator:
    """
    Root of the engine. Stateless: one instance can serve concurrent calls.

    Args:
        clock: monotonic time source used for the caller's deadline.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock

    def validate(self, request: QuotationRequest, deadline: Optional[_Deadline] = None) -> None:
        """Collect every structural issue, then raise once."""
        deadline = deadline or _Deadline(None, self.clock)
        issues: List[ValidationIssue] = []
        if not request.items:
            issues.append(ValidationIssue("items", "required", "at least one line item is needed"))
        params = request.parameters
        needs_weight = params.enable_transport or params.enable_assembly
        for index, item in enumerate(request.items):
            deadline.check("validation")
            issues.extend(_item_issues(index, item, needs_weight))
            deadline.validated_lines.append(index)
        issues.extend(_parameter_issues(params))
        for category in AdjustmentCategory:
            if category not in request.formulas:
                issues.append(ValidationIssue(f"formulas.{category.value}", "required",
                                              "no escalation formula for category"))
        issues.extend(_work_issues("bucket_1", request.complementary_works.bucket_1))
        issues.extend(_work_issues("bucket_2", request.complementary_works.bucket_2))

        if not issues:
            return
        if all(i.path.startswith("items[") and i.code in _LINE_ITEM_CODES for i in issues):
            raise InvalidLineItem(issues)
        raise ValidationError(issues)

    def resolve_target_month(self, request: QuotationRequest, resolver: PriceIndexResolver) -> MonthKey:
        if request.target_price_date is not None:
            return month_of(request.target_price_date)
        names = sorted({n for f in request.formulas.values() for n in f.series_names})
        latest = resolver.latest_common_month(names)
        if latest is None:
            raise ValidationError([ValidationIssue(
                "target_price_date", "unresolvable",
                "no month is present in every series the formulas use",
            )])
        return latest

    @timed
    def calculate(self, request: QuotationRequest, timeout_s: Optional[float] = None) -> QuotationResult:
        start = time.perf_counter()
        try:
            result = self._calculate(request, _Deadline(timeout_s, self.clock))
        except QuoteEngineError as exc:
            tracker.record_error(exc.code)
            raise
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        tracker.record_calculation_complete(duration_ms)
        logger.info(
            "quotation calculated: %d lines, %d trucks, grand total %.2f",
            len(result.lines),
            len(result.freight.loads) if result.freight else 0,
            result.totals.grand_total,
            extra={"quotation_id": request.quotation_id, "duration_ms": duration_ms},
        )
        return result

    def _calculate(self, request: QuotationRequest, deadline: _Deadline) -> QuotationResult:
        params = request.parameters

        with tracker.stage("validation"):
            self.validate(request, deadline)

        resolver = PriceIndexResolver(request.price_indices)
        base_month = month_of(request.base_price_date)
        target_month = self.resolve_target_month(request, resolver)

        with tracker.stage("pricing"):
            engine = PricingEngine(
                resolver, request.adjustments, request.formulas, base_month, target_month
            )
            lines: List[LinePricing] = []
            for index, item in enumerate(request.items):
                deadline.check("pricing")
                lines.append(engine.price_line(index, item))

        freight: Optional[FreightPlan] = None
        if params.enable_transport:
            deadline.check("freight")
            with tracker.stage("freight"):
                optimizer = FreightOptimizer(
                    request.truck,
                    TransportRateLookup(request.transport_rate_table),
                    capacity_tn=params.truck_capacity_tn,
                    packing_rules=request.packing_rules,
                )
                freight = optimizer.optimize(
                    request.items,
                    params.distance_km,
                    length_category_override=params.length_category_override,
                    trips_override=params.trips_override,
                    checkpoint=lambda: deadline.check("freight"),
                )

        deadline.check("assembly")
        with tracker.stage("assembly"):
            weighted = [item.weight_tn for item in request.items if item.has_weight]
            tonnage = sum(weighted) if weighted else None
            assembly = AssemblyCostCalculator(request.assembly_rates).calculate(params, tonnage)

        bucket_1 = sum(w.total for w in request.complementary_works.bucket_1)
        bucket_2 = sum(w.total for w in request.complementary_works.bucket_2)

        materials = sum(line.total_cost for line in lines)
        transport = freight.total if freight is not None else 0.0
        complementary = bucket_1 + bucket_2
        base = materials + transport + assembly.total + complementary
        general_expenses = base * params.general_expenses_pct

        totals = QuotationTotals(
            materials_subtotal=materials,
            transport_total=transport,
            assembly_total=assembly.total,
            complementary_total=complementary,
            general_expenses=general_expenses,
            grand_total=base * (1.0 + params.general_expenses_pct),
        )
        return QuotationResult(
            lines=tuple(lines),
            freight=freight,
            assembly=assembly,
            complementary_bucket_1=bucket_1,
            complementary_bucket_2=bucket_2,
            totals=totals,
            base_month=base_month,
            target_month=target_month,
            general_expenses_pct=params.general_expenses_pct,
            quotation_id=request.quotation_id,
        )
