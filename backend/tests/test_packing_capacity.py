"""
test_packing_capacity.py — Units of one piece type per truck deck.
"""

import pytest

from precast_estimator.services.errors import ValidationError
from precast_estimator.services.packing_capacity import (
    PieceGeometry,
    capacity_breakdown,
    geometry_for,
    units_per_truck,
)
from precast_estimator.services.quote_types import (
    PackingRules,
    PieceLineItem,
    TruckDeck,
    UnitOfMeasure,
)

_DECK = TruckDeck(deck_length_m=13.5, deck_width_m=2.5, max_stack_height_m=2.5)


class TestUnitsPerTruck:

    def test_dimension_bound(self):
        """
        6 x 1.0 x 0.5 m at 2 t, one layer:
          weight 26 / 2 = 13, volume 84.375 / 3 = 28,
          dims floor(13.4 / 6) x floor(2.4 / 1.0) x 1 = 2 x 2 = 4.
        """
        piece = PieceGeometry(6.0, 1.0, 0.5, 2.0)
        breakdown = capacity_breakdown(_DECK, 26.0, piece, PackingRules())
        assert breakdown == {"by_weight": 13, "by_volume": 28, "by_dimensions": 4, "units": 4}

    def test_stacking_layers(self):
        piece = PieceGeometry(6.0, 1.0, 0.5, 2.0)
        assert units_per_truck(_DECK, 26.0, piece, PackingRules(max_stack_layers=3)) == 12

    def test_weight_bound(self):
        """8 t pieces: 26 / 8 -> 3 even though 4 fit by dimensions."""
        piece = PieceGeometry(6.0, 1.0, 0.5, 8.0)
        assert units_per_truck(_DECK, 26.0, piece, PackingRules()) == 3

    def test_never_below_one(self):
        """A 14 m piece fits nowhere on a 13.5 m deck; the helper still reports 1."""
        piece = PieceGeometry(14.0, 1.0, 0.5, 2.0)
        assert units_per_truck(_DECK, 26.0, piece, PackingRules()) == 1

    def test_usable_volume_factor(self):
        deck = TruckDeck(13.5, 2.5, 2.5, usable_volume_factor=0.1)
        piece = PieceGeometry(1.0, 1.0, 1.0, 0.1)
        # 84.375 x 0.1 = 8.4375 m3 -> 8 cubes
        assert capacity_breakdown(deck, 26.0, piece, PackingRules(max_stack_layers=2))["by_volume"] == 8

    def test_invalid_geometry_rejected(self):
        with pytest.raises(ValidationError) as exc:
            units_per_truck(_DECK, 26.0, PieceGeometry(0.0, 1.0, -1.0, 2.0), PackingRules())
        assert {i.path for i in exc.value.issues} == {"piece.length_m", "piece.height_m"}


class TestGeometryFor:

    def test_complete_line(self):
        item = PieceLineItem("slab", UnitOfMeasure.UND, 4, 10.0, length_m=6.0, width_m=1.0,
                             height_m=0.2, weight_per_piece_kg=1_500.0)
        assert geometry_for(item) == PieceGeometry(6.0, 1.0, 0.2, 1.5)

    def test_missing_dimension(self):
        item = PieceLineItem("slab", UnitOfMeasure.UND, 4, 10.0, length_m=6.0,
                             weight_per_piece_kg=1_500.0)
        assert geometry_for(item) is None
