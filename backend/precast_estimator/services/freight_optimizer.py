"""
FreightOptimizer — packs precast pieces onto trucks and prices the trips.

Greedy first-fit-decreasing, deterministic for a given input order:

  1. every line is expanded into unit pieces (whole pieces plus one
     fractional remainder piece);
  2. pieces are sorted by descending weight, ties keep input order;
  3. each piece goes on the first open truck that accepts it, otherwise a
     new truck is opened.

A truck accepts a piece when it is in the same lane (long pieces ride only
with long pieces of the same length category, short with short, dedicated
pieces alone), the weight stays within capacity and the summed occupancy
``quantity / units_per_truck`` stays within 1.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from precast_estimator import config
from precast_estimator.services.distance_billing import billed_distance
from precast_estimator.services.errors import OversizedPiece
from precast_estimator.services.packing_capacity import geometry_for, units_per_truck
from precast_estimator.services.quote_types import (
    LengthCategory,
    LoadedPiece,
    PackingRules,
    PieceLineItem,
    TruckLoad,
    TruckProfile,
)
from precast_estimator.services.transport_rates import TransportRateLookup

logger = logging.getLogger("precast-freight")

_EPS = 1e-9


def _ceil_div(amount: float, per_unit: float) -> int:
    if amount <= _EPS or per_unit <= 0:
        return 0
    return math.ceil(amount / per_unit - _EPS)


# ---------------------------------------------------------------------------
# Unit pieces
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _UnitPiece:
    line_index: int
    description: str
    quantity: float          # 1.0, or the fractional remainder
    weight_tn: float
    length_m: float
    length_category: LengthCategory
    requires_escort: bool
    dedicated: bool
    occupancy: float         # quantity / units_per_truck, 0 when uncapped

    @property
    def lane(self) -> Tuple[str, Optional[str]]:
        if self.requires_escort:
            return ("long", self.length_category.value)
        return ("short", None)


@dataclass
class _LoadBuilder:
    """Open truck during packing. Pieces are only ever appended."""
    lane: Tuple[str, Optional[str]]
    dedicated: bool
    requires_escort: bool
    pieces: List[_UnitPiece] = field(default_factory=list)
    weight_tn: float = 0.0
    occupancy: float = 0.0

    def accepts(self, piece: _UnitPiece, capacity_tn: float) -> bool:
        if self.dedicated or piece.dedicated or piece.lane != self.lane:
            return False
        if self.weight_tn + piece.weight_tn > capacity_tn + _EPS:
            return False
        return self.occupancy + piece.occupancy <= 1.0 + _EPS

    def add(self, piece: _UnitPiece) -> None:
        self.pieces.append(piece)
        self.weight_tn += piece.weight_tn
        self.occupancy += piece.occupancy

    def assigned(self) -> Tuple[LoadedPiece, ...]:
        """Unit pieces folded back into one entry per input line, in line order."""
        by_line: Dict[int, List[_UnitPiece]] = {}
        for p in self.pieces:
            by_line.setdefault(p.line_index, []).append(p)
        return tuple(
            LoadedPiece(
                line_index=idx,
                description=group[0].description,
                quantity=sum(p.quantity for p in group),
                weight_tn=sum(p.weight_tn for p in group),
                length_m=max(p.length_m for p in group),
            )
            for idx, group in sorted(by_line.items())
        )

    @property
    def length_category(self) -> LengthCategory:
        return LengthCategory.longest(p.length_category for p in self.pieces)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FreightPlan:
    loads: Tuple[TruckLoad, ...]
    required_trips: int
    billed_trips: int
    real_distance_km: float
    billed_distance_km: float
    total: float
    trips_overridden: bool = False
    category_override: Optional[LengthCategory] = None

    @property
    def real_weight_tn(self) -> float:
        return sum(load.real_weight_tn for load in self.loads)

    @property
    def false_weight_tn(self) -> float:
        return sum(load.false_weight_tn for load in self.loads)

    @property
    def quantity(self) -> float:
        return sum(load.quantity for load in self.loads)

    def as_dict(self) -> Dict[str, object]:
        m, w = config.MONEY_DECIMALS, config.WEIGHT_DECIMALS
        return {
            "enabled": True,
            "total": round(self.total, m),
            "trips": self.billed_trips,
            "required_trips": self.required_trips,
            "packed_trucks": len(self.loads),
            "trips_overridden": self.trips_overridden,
            "length_category_override": (
                self.category_override.value if self.category_override else None
            ),
            "real_distance_km": self.real_distance_km,
            "billed_distance_km": self.billed_distance_km,
            "real_weight_tn": round(self.real_weight_tn, w),
            "false_weight_tn": round(self.false_weight_tn, w),
            "per_truck_breakdown": [
                {
                    "truck_number": load.truck_number,
                    "length_category": load.length_category.value,
                    "requires_escort": load.requires_escort,
                    "dedicated": load.dedicated,
                    "quantity": round(load.quantity, 3),
                    "real_weight_tn": round(load.real_weight_tn, w),
                    "false_weight_tn": round(load.false_weight_tn, w),
                    "cost": round(load.cost, m),
                    "pieces": [
                        {
                            "line_index": p.line_index,
                            "description": p.description,
                            "quantity": round(p.quantity, 3),
                            "weight_tn": round(p.weight_tn, w),
                        }
                        for p in load.assigned_pieces
                    ],
                }
                for load in self.loads
            ],
        }


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------

class FreightOptimizer:
    """
    Truck packing and transport pricing for one quotation.

    Args:
        truck:         truck profile (limits, minimum billable load, deck).
        rates:         tariff lookup for this calculation.
        capacity_tn:   commercial truck capacity; the effective capacity is
                       the lower of this and the profile's max weight.
        packing_rules: enables deck-derived units-per-truck caps.
    """

    def __init__(
        self,
        truck: TruckProfile,
        rates: TransportRateLookup,
        capacity_tn: Optional[float] = None,
        packing_rules: Optional[PackingRules] = None,
    ) -> None:
        self.truck = truck
        self.rates = rates
        self.capacity_tn = (
            min(capacity_tn, truck.max_weight_tn) if capacity_tn else truck.max_weight_tn
        )
        self.packing_rules = packing_rules

    # ── Capacity caps ───────────────────────────────────────────────────────

    def units_cap(self, item: PieceLineItem) -> Optional[int]:
        """Units per truck for a line: explicit override, deck-derived, or profile default."""
        if item.units_per_truck:
            return item.units_per_truck
        if self.truck.deck is not None and self.packing_rules is not None:
            geometry = geometry_for(item)
            if geometry is not None:
                return units_per_truck(self.truck.deck, self.capacity_tn, geometry, self.packing_rules)
        return self.truck.pieces_per_truck

    # ── Trip lower bound ────────────────────────────────────────────────────

    def volume_trip_count(self) -> int:
        """Volume-based trip counting is not yet supported; contributes nothing."""
        logger.debug("volume-based trip count not supported, contributing 0 trips")
        return 0

    def required_trip_count(self, items: Sequence[PieceLineItem]) -> int:
        total_weight = sum(item.weight_tn or 0.0 for item in items)
        by_weight = _ceil_div(total_weight, self.capacity_tn)

        caps = [(item.quantity, self.units_cap(item)) for item in items]
        by_units = 0
        if any(cap for _, cap in caps):
            by_units = _ceil_div(sum(q / cap for q, cap in caps if cap), 1.0)

        return max(by_weight, by_units, self.volume_trip_count())

    # ── Packing ─────────────────────────────────────────────────────────────

    def _expand(self, index: int, item: PieceLineItem) -> List[_UnitPiece]:
        piece_weight = item.piece_weight_tn or 0.0
        length = item.length_m or 0.0
        category = LengthCategory.for_length(length)

        if piece_weight > self.capacity_tn + _EPS:
            raise OversizedPiece(
                item.description,
                f"{piece_weight:.3f} t exceeds truck capacity {self.capacity_tn:g} t",
            )
        if category.rank > self.truck.max_length_category.rank:
            raise OversizedPiece(
                item.description,
                f"length {length:g} m ({category.value}) exceeds truck limit "
                f"{self.truck.max_length_category.value}",
            )

        cap = self.units_cap(item)
        escort = length > self.truck.escort_length_threshold_m
        whole = int(math.floor(item.quantity + _EPS))
        remainder = item.quantity - whole
        quantities = [1.0] * whole
        if remainder > _EPS:
            quantities.append(remainder)

        return [
            _UnitPiece(
                line_index=index,
                description=item.description,
                quantity=q,
                weight_tn=piece_weight * q,
                length_m=length,
                length_category=category,
                requires_escort=escort,
                dedicated=item.individual_transport,
                occupancy=q / cap if cap else 0.0,
            )
            for q in quantities
        ]

    def pack(
        self,
        items: Sequence[PieceLineItem],
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> List[_LoadBuilder]:
        pieces: List[_UnitPiece] = []
        for index, item in enumerate(items):
            if checkpoint is not None:
                checkpoint()
            pieces.extend(self._expand(index, item))

        # sorted() is stable, so equal weights keep input order
        ordered = sorted(pieces, key=lambda p: -p.weight_tn)

        builders: List[_LoadBuilder] = []
        for piece in ordered:
            target = None
            for b in builders:
                if b.accepts(piece, self.capacity_tn):
                    target = b
                    break
            if target is None:
                target = _LoadBuilder(
                    lane=piece.lane,
                    dedicated=piece.dedicated,
                    requires_escort=piece.requires_escort,
                )
                builders.append(target)
                logger.debug(
                    "opened truck %d for line %d (lane=%s, dedicated=%s)",
                    len(builders), piece.line_index, piece.lane[0], piece.dedicated,
                )
            target.add(piece)
        return builders

    def optimize(
        self,
        items: Sequence[PieceLineItem],
        distance_km: float,
        length_category_override: Optional[LengthCategory] = None,
        trips_override: Optional[float] = None,
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> FreightPlan:
        billed_km = billed_distance(distance_km)
        required = self.required_trip_count(items)
        builders = self.pack(items, checkpoint)

        # With a trips override every load is billed at the single override tariff
        override_tariff: Optional[float] = None
        if trips_override is not None:
            bill_category = length_category_override or LengthCategory.longest(
                b.length_category for b in builders
            )
            override_tariff = self.rates.rate(bill_category, billed_km, 1 if trips_override > _EPS else 0)

        loads: List[TruckLoad] = []
        for number, b in enumerate(builders, start=1):
            category = length_category_override or b.length_category
            if override_tariff is not None:
                cost = override_tariff
            else:
                cost = self.rates.tariff(category, billed_km)
            false_weight = 0.0
            if b.weight_tn < self.truck.min_billable_weight_tn:
                false_weight = self.truck.min_billable_weight_tn - b.weight_tn
            loads.append(TruckLoad(
                truck_number=number,
                assigned_pieces=b.assigned(),
                real_weight_tn=b.weight_tn,
                false_weight_tn=false_weight,
                length_category=category,
                requires_escort=b.requires_escort,
                dedicated=b.dedicated,
                cost=cost,
            ))

        if trips_override is not None:
            billed_trips = math.ceil(trips_override - _EPS)
            total = self.rates.rate(bill_category, billed_km, billed_trips)
        else:
            billed_trips = len(loads)
            total = sum(load.cost for load in loads)

        logger.debug(
            "freight plan: %d trucks packed, %d required, %d billed, %.0f km billed",
            len(loads), required, billed_trips, billed_km,
        )
        return FreightPlan(
            loads=tuple(loads),
            required_trips=required,
            billed_trips=billed_trips,
            real_distance_km=float(distance_km),
            billed_distance_km=billed_km,
            total=total,
            trips_overridden=trips_override is not None,
            category_override=length_category_override,
        )
