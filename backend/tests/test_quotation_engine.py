"""
test_quotation_engine.py — End-to-end aggregation over the shared sample request.

Sample request (see conftest): 37 km (billed 50), 10 % general expenses,
zero assembly rates, Jan -> Mar 2024 escalation.

  materials    beam   2 x 1 000 x 3.0         =  6 000
               column 24 m x 500 x 2.5        = 30 000
               slab   72 m2 x 50 x 3.0        = 10 800
                                                46 800
  transport    3 trucks x 100 000             = 300 000
  base                                          346 800
  general expenses 10 %                          34 680
  grand total                                   381 480
"""

import logging
from dataclasses import replace
from datetime import date

import pytest

from precast_estimator.services.errors import (
    CalculationTimeout,
    InvalidLineItem,
    MissingPriceIndex,
    MissingTariff,
    ValidationError,
)
from precast_estimator.services.perf_monitor import tracker
from precast_estimator.services.quotation_engine import QuotationAggregator
from precast_estimator.services.quote_types import (
    AdjustmentCategory,
    AdjustmentScale,
    AssemblyRates,
    ComplementaryWorkLine,
    ComplementaryWorks,
    PieceLineItem,
    UnitOfMeasure,
)


class _StepClock:
    """Fake monotonic clock advancing one second per reading."""

    def __init__(self):
        self.now = -1.0

    def __call__(self):
        self.now += 1.0
        return self.now


# ===========================================================================
# Totals
# ===========================================================================

class TestTotals:

    def test_sample_totals(self, aggregator, make_request):
        totals = aggregator.calculate(make_request()).totals
        assert totals.materials_subtotal == pytest.approx(46_800.0)
        assert totals.transport_total == pytest.approx(300_000.0)
        assert totals.assembly_total == 0.0
        assert totals.complementary_total == 0.0
        assert totals.general_expenses == pytest.approx(34_680.0)
        assert totals.grand_total == pytest.approx(381_480.0)

    def test_grand_total_is_base_plus_general_expenses(self, aggregator, make_request):
        totals = aggregator.calculate(make_request(parameters={"general_expenses_pct": 0.25})).totals
        base = (totals.materials_subtotal + totals.transport_total
                + totals.assembly_total + totals.complementary_total)
        assert totals.general_expenses == pytest.approx(base * 0.25)
        assert totals.grand_total == pytest.approx(base * 1.25)

    def test_transport_disabled(self, aggregator, make_request):
        """46 800 x 1.10 = 51 480."""
        result = aggregator.calculate(make_request(parameters={"enable_transport": False}))
        assert result.freight is None
        assert result.totals.transport_total == 0.0
        assert result.totals.grand_total == pytest.approx(51_480.0)
        assert result.as_dict()["transport"]["enabled"] is False

    def test_assembly_uses_known_tonnage(self, aggregator, make_request):
        """74 t x 1 000 + 2 days x 500 = 75 000."""
        request = make_request(
            assembly_rates=AssemblyRates(per_ton_rate=1_000.0, crew_day_rate=500.0),
            parameters={"assembly_days": 2},
        )
        assert aggregator.calculate(request).totals.assembly_total == pytest.approx(75_000.0)

    def test_assembly_disabled(self, aggregator, make_request):
        request = make_request(
            assembly_rates=AssemblyRates(per_ton_rate=1_000.0),
            parameters={"enable_assembly": False},
        )
        result = aggregator.calculate(request)
        assert result.totals.assembly_total == 0.0
        assert result.assembly.enabled is False

    def test_complementary_buckets(self, aggregator, make_request):
        """bucket 1: 2 x 1 000 = 2 000; bucket 2: 10 m x 5 m x 10 = 500."""
        works = ComplementaryWorks(
            bucket_1=(ComplementaryWorkLine("earthworks", UnitOfMeasure.UND, 2, 1_000.0),),
            bucket_2=(ComplementaryWorkLine("paving", UnitOfMeasure.M2, 1, 10.0,
                                            length_m=10.0, width_m=5.0),),
        )
        result = aggregator.calculate(make_request(complementary_works=works))
        assert result.complementary_bucket_1 == pytest.approx(2_000.0)
        assert result.complementary_bucket_2 == pytest.approx(500.0)
        assert result.totals.grand_total == pytest.approx((346_800.0 + 2_500.0) * 1.10)

    def test_materials_strictly_increase_with_multiplier(self, aggregator, make_request):
        """46 800 x 1.1 = 51 480."""
        base = aggregator.calculate(make_request(adjustments=AdjustmentScale(global_multiplier=1.0)))
        raised = aggregator.calculate(make_request(adjustments=AdjustmentScale(global_multiplier=1.1)))
        assert raised.totals.materials_subtotal > base.totals.materials_subtotal
        assert raised.totals.materials_subtotal == pytest.approx(51_480.0)

    def test_target_month_defaults_to_latest_common(self, aggregator, make_request):
        result = aggregator.calculate(make_request(target_price_date=None))
        assert result.target_month == (2024, 3)
        assert result.totals.grand_total == pytest.approx(381_480.0)

    def test_idempotent(self, aggregator, make_request):
        request = make_request()
        assert aggregator.calculate(request).as_dict() == aggregator.calculate(request).as_dict()

    def test_as_dict_shape(self, aggregator, make_request):
        body = aggregator.calculate(make_request(quotation_id="Q-1")).as_dict()
        assert body["quotation_id"] == "Q-1"
        assert body["price_months"] == {"base": "2024-01", "target": "2024-03"}
        assert body["materials"]["subtotal_raw"] == 17_600.0
        assert body["materials"]["subtotal_final"] == 46_800.0
        assert len(body["materials"]["per_piece_breakdown"]) == 3
        assert body["transport"]["trips"] == 3
        assert body["totals"]["grand_total_before_tax"] == 381_480.0
        assert body["totals"]["general_expenses"] == 34_680.0


# ===========================================================================
# Errors
# ===========================================================================

class TestErrors:

    def test_line_item_issues_collected(self, aggregator, make_request, sample_items):
        items = (
            replace(sample_items[0], quantity=0),
            sample_items[1],
            replace(sample_items[2], unit_price=-1.0),
        )
        with pytest.raises(InvalidLineItem) as exc:
            aggregator.calculate(make_request(items=items))
        assert [i.path for i in exc.value.issues] == ["items[0].quantity", "items[2].unit_price"]

    def test_mixed_issues_are_a_validation_error(self, aggregator, make_request, sample_items):
        items = (replace(sample_items[0], quantity=0),) + sample_items[1:]
        with pytest.raises(ValidationError) as exc:
            aggregator.calculate(make_request(items=items, parameters={"distance_km": -5.0}))
        assert not isinstance(exc.value, InvalidLineItem)
        paths = {i.path for i in exc.value.issues}
        assert paths == {"items[0].quantity", "parameters.distance_km"}

    def test_mt_line_without_length(self, aggregator, make_request):
        items = (PieceLineItem("column", UnitOfMeasure.MT, 3, 500.0),)
        with pytest.raises(ValidationError) as exc:
            aggregator.calculate(make_request(items=items))
        assert exc.value.issues[0].code == "required_for_unit"

    def test_weightless_piece_rejected_when_transport_enabled(self, aggregator, make_request, sample_items):
        """500 beams without a weight must not pack as one 0 t truck."""
        items = sample_items + (PieceLineItem("beam", UnitOfMeasure.UND, 500, 1_000.0, length_m=12.0),)
        with pytest.raises(ValidationError) as exc:
            aggregator.calculate(make_request(items=items))
        assert not isinstance(exc.value, InvalidLineItem)
        assert [(i.path, i.code) for i in exc.value.issues] == [("items[3]", "weight_missing")]

    def test_weightless_piece_rejected_for_assembly_only(self, aggregator, make_request):
        items = (PieceLineItem("beam", UnitOfMeasure.UND, 2, 1_000.0),)
        with pytest.raises(ValidationError) as exc:
            aggregator.calculate(make_request(items=items, parameters={"enable_transport": False}))
        assert exc.value.issues[0].code == "weight_missing"

    def test_weightless_piece_allowed_for_materials_only(self, aggregator, make_request):
        """2 x 1 000 x 3.0 x 1.10 = 6 600."""
        items = (PieceLineItem("beam", UnitOfMeasure.UND, 2, 1_000.0),)
        request = make_request(items=items, parameters={"enable_transport": False, "enable_assembly": False})
        assert aggregator.calculate(request).totals.grand_total == pytest.approx(6_600.0)

    def test_complementary_area_line_needs_dimensions(self, aggregator, make_request):
        works = ComplementaryWorks(
            bucket_1=(ComplementaryWorkLine("paving", UnitOfMeasure.M2, 10, 5_000.0),),
            bucket_2=(ComplementaryWorkLine("kerb", UnitOfMeasure.MT, 4, 200.0),),
        )
        with pytest.raises(ValidationError) as exc:
            aggregator.calculate(make_request(complementary_works=works))
        assert [(i.path, i.code) for i in exc.value.issues] == [
            ("complementary_works.bucket_1[0].length_m", "required_for_unit"),
            ("complementary_works.bucket_1[0].width_m", "required_for_unit"),
            ("complementary_works.bucket_2[0].length_m", "required_for_unit"),
        ]

    def test_empty_items(self, aggregator, make_request):
        with pytest.raises(ValidationError):
            aggregator.calculate(make_request(items=()))

    def test_missing_formula(self, aggregator, make_request, formulas):
        partial = {AdjustmentCategory.GENERAL: formulas[AdjustmentCategory.GENERAL]}
        with pytest.raises(ValidationError) as exc:
            aggregator.calculate(make_request(formulas=partial))
        assert exc.value.issues[0].path == "formulas.ESPECIAL"

    def test_missing_index_month(self, aggregator, make_request):
        """STEEL has no Feb 2024 value."""
        with pytest.raises(MissingPriceIndex):
            aggregator.calculate(make_request(target_price_date=date(2024, 2, 1)))

    def test_missing_tariff(self, aggregator, make_request):
        """500 km is above the largest 200 km bracket."""
        with pytest.raises(MissingTariff):
            aggregator.calculate(make_request(parameters={"distance_km": 500.0}))

    def test_errors_counted(self, aggregator, make_request):
        with pytest.raises(MissingTariff):
            aggregator.calculate(make_request(parameters={"distance_km": 500.0}))
        assert tracker.get_metrics()["error_count_by_code"] == {"missing_tariff": 1}


# ===========================================================================
# Timeout
# ===========================================================================

class TestTimeout:

    def test_timeout_during_validation(self, make_request):
        """
        Clock reads 0 at start (deadline 2.5), then 1, 2 for lines 0-1,
        then 3 before line 2 -> timeout with lines 0 and 1 validated.
        """
        aggregator = QuotationAggregator(clock=_StepClock())
        with pytest.raises(CalculationTimeout) as exc:
            aggregator.calculate(make_request(), timeout_s=2.5)
        assert exc.value.validated_lines == [0, 1]
        assert exc.value.stage == "validation"

    def test_timeout_during_pricing(self, make_request):
        aggregator = QuotationAggregator(clock=_StepClock())
        with pytest.raises(CalculationTimeout) as exc:
            aggregator.calculate(make_request(), timeout_s=4.5)
        assert exc.value.validated_lines == [0, 1, 2]
        assert exc.value.stage == "pricing"

    def test_no_timeout_without_deadline(self, make_request):
        aggregator = QuotationAggregator(clock=_StepClock())
        assert aggregator.calculate(make_request()).totals.grand_total == pytest.approx(381_480.0)


# ===========================================================================
# Observability
# ===========================================================================

class TestObservability:

    def test_info_line_per_calculation(self, aggregator, make_request, caplog):
        caplog.set_level(logging.INFO, logger="precast-quotation")
        aggregator.calculate(make_request(quotation_id="Q-42"))
        records = [r for r in caplog.records if r.name == "precast-quotation"]
        assert len(records) == 1
        assert records[0].quotation_id == "Q-42"
        assert "3 trucks" in records[0].getMessage()

    def test_metrics_recorded(self, aggregator, make_request):
        aggregator.calculate(make_request())
        metrics = tracker.get_metrics()
        assert metrics["calculations_processed"] == 1
        assert {"validation", "pricing", "freight", "assembly"} <= set(metrics["stage_avg_ms"])
