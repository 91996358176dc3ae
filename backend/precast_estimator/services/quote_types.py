"""
Immutable engine inputs and derived records.

Everything a calculation reads is a frozen dataclass built per call, so two
concurrent calculations never share mutable state and a caller can hand in a
consistent snapshot of every table.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple, Type

from precast_estimator import config
from precast_estimator.services.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Closed variants
# ---------------------------------------------------------------------------

class UnitOfMeasure(str, Enum):
    UND = "UND"   # pieces
    MT = "MT"     # linear metres
    M2 = "M2"     # square metres


class AdjustmentCategory(str, Enum):
    GENERAL = "GENERAL"
    ESPECIAL = "ESPECIAL"   # slabs, plates, prestressed


class LengthCategory(str, Enum):
    L13_5 = "13_5m"
    L16 = "16m"
    L26 = "26m"
    L30 = "30m"
    OVER_30 = ">30m"

    @property
    def upper_bound_m(self) -> float:
        bound = config.LENGTH_CATEGORY_BOUNDS_M[self.value]
        return math.inf if bound is None else bound

    @property
    def rank(self) -> int:
        return _LENGTH_ORDER.index(self)

    @classmethod
    def for_length(cls, length_m: float) -> "LengthCategory":
        """Smallest category whose upper bound holds ``length_m``."""
        for category in _LENGTH_ORDER:
            if length_m <= category.upper_bound_m:
                return category
        return cls.OVER_30

    @classmethod
    def longest(cls, categories: Iterable["LengthCategory"]) -> "LengthCategory":
        return max(categories, key=lambda c: c.rank, default=cls.L13_5)


_LENGTH_ORDER: Tuple[LengthCategory, ...] = tuple(LengthCategory)


def require_exhaustive(table: Mapping, enum_cls: Type[Enum], table_name: str) -> None:
    """Raise at import time when a dispatch table misses an enum member."""
    missing = [m.value for m in enum_cls if m not in table and m.value not in table]
    if missing:
        raise ConfigurationError(f"{table_name} has no entry for {missing}")


require_exhaustive(config.LENGTH_CATEGORY_BOUNDS_M, LengthCategory, "LENGTH_CATEGORY_BOUNDS_M")


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PieceLineItem:
    description: str
    unit: UnitOfMeasure
    quantity: float
    unit_price: float
    adjustment_category: AdjustmentCategory = AdjustmentCategory.GENERAL
    length_m: Optional[float] = None
    width_m: Optional[float] = None
    height_m: Optional[float] = None
    weight_per_unit_tn: Optional[float] = None
    weight_per_piece_kg: Optional[float] = None
    individual_transport: bool = False
    units_per_truck: Optional[int] = None

    @property
    def measure(self) -> float:
        """Quantity expressed in the line's unit of measure."""
        if self.unit is UnitOfMeasure.M2:
            return self.quantity * (self.length_m or 0.0) * (self.width_m or 0.0)
        if self.unit is UnitOfMeasure.MT:
            return self.quantity * (self.length_m or 0.0)
        return self.quantity

    @property
    def has_weight(self) -> bool:
        if self.weight_per_unit_tn is not None:
            return True
        return self.unit is UnitOfMeasure.UND and self.weight_per_piece_kg is not None

    @property
    def weight_tn(self) -> Optional[float]:
        """Total line weight in tonnes, or None when the line carries no weight data."""
        if self.weight_per_unit_tn is not None:
            return self.measure * self.weight_per_unit_tn
        if self.unit is UnitOfMeasure.UND and self.weight_per_piece_kg is not None:
            return self.quantity * self.weight_per_piece_kg / 1000.0
        return None

    @property
    def piece_weight_tn(self) -> Optional[float]:
        total = self.weight_tn
        if total is None or self.quantity <= 0:
            return None
        return total / self.quantity


@dataclass(frozen=True)
class ComplementaryWorkLine:
    """Flat-cost complementary work (earthworks, foundations, ...)."""
    description: str
    unit: UnitOfMeasure
    quantity: float
    unit_price: float
    length_m: Optional[float] = None
    width_m: Optional[float] = None

    @property
    def measure(self) -> float:
        if self.unit is UnitOfMeasure.M2:
            return self.quantity * (self.length_m or 0.0) * (self.width_m or 0.0)
        if self.unit is UnitOfMeasure.MT:
            return self.quantity * (self.length_m or 0.0)
        return self.quantity

    @property
    def total(self) -> float:
        return self.measure * self.unit_price


@dataclass(frozen=True)
class ComplementaryWorks:
    bucket_1: Tuple[ComplementaryWorkLine, ...] = ()
    bucket_2: Tuple[ComplementaryWorkLine, ...] = ()


# ---------------------------------------------------------------------------
# Price indices and escalation
# ---------------------------------------------------------------------------

MonthKey = Tuple[int, int]


def month_of(d: date) -> MonthKey:
    return (d.year, d.month)


@dataclass(frozen=True)
class IndexPoint:
    year: int
    month: int
    value: float

    @property
    def key(self) -> MonthKey:
        return (self.year, self.month)


@dataclass(frozen=True)
class IndexSeries:
    name: str
    points: Tuple[IndexPoint, ...]
    _by_month: Dict[MonthKey, float] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        previous: Optional[MonthKey] = None
        for p in self.points:
            if not 1 <= p.month <= 12:
                raise ConfigurationError(f"Series '{self.name}': invalid month {p.month}")
            if not (p.value > 0 and math.isfinite(p.value)):
                raise ConfigurationError(
                    f"Series '{self.name}': index at {p.year:04d}-{p.month:02d} must be positive"
                )
            if previous is not None and p.key <= previous:
                raise ConfigurationError(
                    f"Series '{self.name}' is not chronologically ordered at {p.year:04d}-{p.month:02d}"
                )
            previous = p.key
        object.__setattr__(self, "_by_month", {p.key: p.value for p in self.points})

    def value_at(self, key: MonthKey) -> Optional[float]:
        return self._by_month.get(key)

    @property
    def latest(self) -> Optional[MonthKey]:
        return self.points[-1].key if self.points else None


@dataclass(frozen=True)
class PriceIndexTable:
    series: Tuple[IndexSeries, ...]
    _by_name: Dict[str, IndexSeries] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name: Dict[str, IndexSeries] = {}
        for s in self.series:
            if s.name in by_name:
                raise ConfigurationError(f"Duplicate index series '{s.name}'")
            by_name[s.name] = s
        object.__setattr__(self, "_by_name", by_name)

    def get(self, name: str) -> Optional[IndexSeries]:
        return self._by_name.get(name)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._by_name)


@dataclass(frozen=True)
class FormulaTerm:
    series: str
    weight: float


@dataclass(frozen=True)
class PolynomialFormula:
    terms: Tuple[FormulaTerm, ...]

    def __post_init__(self) -> None:
        if not self.terms:
            raise ConfigurationError("Polynomial formula needs at least one term")
        for t in self.terms:
            if t.weight < 0 or not math.isfinite(t.weight):
                raise ConfigurationError(f"Weight for series '{t.series}' must be >= 0")
        total = sum(t.weight for t in self.terms)
        if abs(total - 1.0) > config.FORMULA_WEIGHT_TOLERANCE:
            raise ConfigurationError(f"Polynomial weights sum to {total:.6f}, expected 1")

    @classmethod
    def single(cls, series: str) -> "PolynomialFormula":
        return cls(terms=(FormulaTerm(series=series, weight=1.0),))

    @property
    def series_names(self) -> Tuple[str, ...]:
        return tuple(t.series for t in self.terms)


# ---------------------------------------------------------------------------
# Commercial adjustments
# ---------------------------------------------------------------------------

def _check_pct(name: str, pct: float) -> None:
    if not math.isfinite(pct) or not (config.ADJUSTMENT_PCT_MIN < pct <= config.ADJUSTMENT_PCT_MAX):
        raise ConfigurationError(
            f"{name} = {pct} outside ({config.ADJUSTMENT_PCT_MIN}, {config.ADJUSTMENT_PCT_MAX}]"
        )


@dataclass(frozen=True)
class AdjustmentScale:
    category_pct: Mapping[AdjustmentCategory, float] = field(default_factory=dict)
    commercial_discount_pct: float = 0.0
    global_multiplier: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "category_pct", MappingProxyType(dict(self.category_pct)))
        for category, pct in self.category_pct.items():
            _check_pct(f"category_pct[{AdjustmentCategory(category).value}]", pct)
        _check_pct("commercial_discount_pct", self.commercial_discount_pct)
        if not (self.global_multiplier > 0 and math.isfinite(self.global_multiplier)):
            raise ConfigurationError(f"global_multiplier must be > 0, got {self.global_multiplier}")

    def pct_for(self, category: AdjustmentCategory) -> float:
        return float(self.category_pct.get(category, 0.0))


# ---------------------------------------------------------------------------
# Freight
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TruckDeck:
    deck_length_m: float
    deck_width_m: float
    max_stack_height_m: float
    usable_volume_factor: float = 1.0


@dataclass(frozen=True)
class PackingRules:
    min_gap_m: float = 0.1
    max_stack_layers: int = 1
    layer_height_m: Optional[float] = None


@dataclass(frozen=True)
class TruckProfile:
    name: str = "semi"
    max_weight_tn: float = config.DEFAULT_TRUCK_CAPACITY_TN
    min_billable_weight_tn: float = config.DEFAULT_MIN_BILLABLE_WEIGHT_TN
    max_length_category: LengthCategory = LengthCategory.OVER_30
    pieces_per_truck: Optional[int] = None
    escort_length_threshold_m: float = config.DEFAULT_ESCORT_LENGTH_THRESHOLD_M
    deck: Optional[TruckDeck] = None

    def __post_init__(self) -> None:
        if self.max_weight_tn <= 0:
            raise ConfigurationError("Truck max_weight_tn must be > 0")
        if self.min_billable_weight_tn < 0:
            raise ConfigurationError("Truck min_billable_weight_tn must be >= 0")
        if self.pieces_per_truck is not None and self.pieces_per_truck < 1:
            raise ConfigurationError("Truck pieces_per_truck must be >= 1")


@dataclass(frozen=True)
class TariffEntry:
    length_category: LengthCategory
    distance_km: float
    price_per_trip: float


@dataclass(frozen=True)
class LoadedPiece:
    """Share of one input line riding on a given truck."""
    line_index: int
    description: str
    quantity: float
    weight_tn: float
    length_m: float


@dataclass(frozen=True)
class TruckLoad:
    truck_number: int
    assigned_pieces: Tuple[LoadedPiece, ...]
    real_weight_tn: float
    false_weight_tn: float
    length_category: LengthCategory
    requires_escort: bool
    dedicated: bool
    cost: float

    @property
    def quantity(self) -> float:
        return sum(p.quantity for p in self.assigned_pieces)

    @property
    def billed_weight_tn(self) -> float:
        return self.real_weight_tn + self.false_weight_tn


# ---------------------------------------------------------------------------
# Commercial parameters and assembly rates
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommercialParameters:
    general_expenses_pct: float = config.DEFAULT_GENERAL_EXPENSES_PCT
    truck_capacity_tn: float = config.DEFAULT_TRUCK_CAPACITY_TN
    enable_transport: bool = True
    enable_assembly: bool = True
    distance_km: float = 0.0
    assembly_days: float = 0.0
    crane_extra_days: float = 0.0
    crane_relocation_km: float = 0.0
    uses_extra_crane: bool = False
    length_category_override: Optional[LengthCategory] = None
    trips_override: Optional[float] = None


@dataclass(frozen=True)
class AssemblyRates:
    per_ton_rate: float = 0.0
    crew_day_rate: float = 0.0
    crane_day_rate: float = 0.0
    crane_relocation_rate: float = 0.0

    def __post_init__(self) -> None:
        for name in ("per_ton_rate", "crew_day_rate", "crane_day_rate", "crane_relocation_rate"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"Assembly rate {name} must be >= 0")
