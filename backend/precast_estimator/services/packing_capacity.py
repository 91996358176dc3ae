"""
Units per truck — how many identical pieces fit on one truck deck.

The binding limit is the smallest of weight, usable volume and deck
dimensions (pieces laid along the deck length and width, stacked up to the
rule's layer count). The result is never below 1: a piece that fits nowhere
is the freight optimizer's problem (OversizedPiece), not this helper's.
"""
import math
from dataclasses import dataclass
from typing import Dict, Optional

from precast_estimator.services.errors import ValidationError, ValidationIssue
from precast_estimator.services.quote_types import PackingRules, PieceLineItem, TruckDeck

# Count used when a divisor leaves the constraint unbounded
_UNBOUNDED = 10 ** 9


@dataclass(frozen=True)
class PieceGeometry:
    length_m: float
    width_m: float
    height_m: float
    weight_tn: float

    @property
    def volume_m3(self) -> float:
        return self.length_m * self.width_m * self.height_m


def _floor_div(a: float, b: float) -> int:
    if b <= 0:
        return _UNBOUNDED
    return max(0, math.floor(a / b))


def _check_inputs(deck: TruckDeck, max_payload_tn: float, piece: PieceGeometry) -> None:
    values = {
        "deck.deck_length_m": deck.deck_length_m,
        "deck.deck_width_m": deck.deck_width_m,
        "deck.max_stack_height_m": deck.max_stack_height_m,
        "max_payload_tn": max_payload_tn,
        "piece.length_m": piece.length_m,
        "piece.width_m": piece.width_m,
        "piece.height_m": piece.height_m,
        "piece.weight_tn": piece.weight_tn,
    }
    issues = [
        ValidationIssue(path, "must_be_positive", f"got {value!r}")
        for path, value in values.items()
        if not (value > 0 and math.isfinite(value))
    ]
    if issues:
        raise ValidationError(issues)


def capacity_breakdown(
    deck: TruckDeck,
    max_payload_tn: float,
    piece: PieceGeometry,
    rules: PackingRules,
) -> Dict[str, int]:
    """Per-constraint unit counts; ``units`` is the binding one."""
    _check_inputs(deck, max_payload_tn, piece)
    by_weight = _floor_div(max_payload_tn, piece.weight_tn)

    usable_volume = (
        deck.deck_length_m * deck.deck_width_m * deck.max_stack_height_m
    ) * (deck.usable_volume_factor or 1.0)
    by_volume = _floor_div(usable_volume, piece.volume_m3)

    per_length = _floor_div(deck.deck_length_m - rules.min_gap_m, piece.length_m)
    per_width = _floor_div(deck.deck_width_m - rules.min_gap_m, piece.width_m)
    layer_height = rules.layer_height_m or piece.height_m
    layers = min(rules.max_stack_layers or 1, _floor_div(deck.max_stack_height_m, layer_height))
    by_dimensions = per_length * per_width * max(1, layers)

    units = min(max(1, by_weight), max(1, by_volume), max(1, by_dimensions))
    return {
        "by_weight": by_weight,
        "by_volume": by_volume,
        "by_dimensions": by_dimensions,
        "units": max(1, units),
    }


def units_per_truck(
    deck: TruckDeck,
    max_payload_tn: float,
    piece: PieceGeometry,
    rules: PackingRules,
) -> int:
    return capacity_breakdown(deck, max_payload_tn, piece, rules)["units"]


def geometry_for(item: PieceLineItem) -> Optional[PieceGeometry]:
    """Piece geometry of a line, or None when any dimension or the weight is unknown."""
    weight = item.piece_weight_tn
    if not (item.length_m and item.width_m and item.height_m) or not weight:
        return None
    return PieceGeometry(
        length_m=item.length_m,
        width_m=item.width_m,
        height_m=item.height_m,
        weight_tn=weight,
    )
