"""
conftest.py — Shared pytest fixtures for the precast quotation test suite.

No database or external service fixtures are defined here. Every test is a
pure unit test over engine classes, plus FastAPI TestClient tests that run
the app in-process.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``precast_estimator.*`` imports resolve regardless of where pytest is invoked.
"""

import sys
import os
from dataclasses import replace
from datetime import date

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any package imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Price indices
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def index_table():
    """
    Two monthly series:

      COST_OF_LIVING  2024-01: 100   2024-02: 150   2024-03: 300
      STEEL           2024-01: 200                  2024-03: 400

    Jan -> Mar ratios: COST_OF_LIVING 3.0, STEEL 2.0.
    Latest month common to both series: 2024-03.
    """
    from precast_estimator.services.quote_types import IndexPoint, IndexSeries, PriceIndexTable
    return PriceIndexTable(series=(
        IndexSeries("COST_OF_LIVING", (
            IndexPoint(2024, 1, 100.0),
            IndexPoint(2024, 2, 150.0),
            IndexPoint(2024, 3, 300.0),
        )),
        IndexSeries("STEEL", (
            IndexPoint(2024, 1, 200.0),
            IndexPoint(2024, 3, 400.0),
        )),
    ))


@pytest.fixture(scope="session")
def formulas():
    """
    GENERAL  = 1.0 x COST_OF_LIVING          -> Jan->Mar factor 3.0
    ESPECIAL = 0.5 x COST_OF_LIVING + 0.5 x STEEL -> Jan->Mar factor 2.5
    """
    from precast_estimator.services.quote_types import (
        AdjustmentCategory, FormulaTerm, PolynomialFormula,
    )
    return {
        AdjustmentCategory.GENERAL: PolynomialFormula.single("COST_OF_LIVING"),
        AdjustmentCategory.ESPECIAL: PolynomialFormula(terms=(
            FormulaTerm("COST_OF_LIVING", 0.5),
            FormulaTerm("STEEL", 0.5),
        )),
    }


# ---------------------------------------------------------------------------
# Transport tariffs
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def tariff_entries():
    """
    Price per trip by length category at 50 / 100 / 200 km brackets.

      13_5m : 100 000 / 150 000 / 250 000
      16m   : 120 000 / 180 000 / 300 000
      26m   : 200 000 / 300 000 / 500 000
      30m   : 260 000 / 390 000 / 650 000
      >30m  : 400 000 / 600 000 / 1 000 000
    """
    from precast_estimator.services.quote_types import LengthCategory, TariffEntry
    prices = {
        LengthCategory.L13_5: (100_000.0, 150_000.0, 250_000.0),
        LengthCategory.L16: (120_000.0, 180_000.0, 300_000.0),
        LengthCategory.L26: (200_000.0, 300_000.0, 500_000.0),
        LengthCategory.L30: (260_000.0, 390_000.0, 650_000.0),
        LengthCategory.OVER_30: (400_000.0, 600_000.0, 1_000_000.0),
    }
    return tuple(
        TariffEntry(category, km, price)
        for category, row in prices.items()
        for km, price in zip((50.0, 100.0, 200.0), row)
    )


@pytest.fixture(scope="session")
def rate_lookup(tariff_entries):
    from precast_estimator.services.transport_rates import TransportRateLookup
    return TransportRateLookup(tariff_entries)


@pytest.fixture(scope="session")
def truck():
    """Default semi: 26 t capacity, 20 t minimum billable load, escort above 13.5 m."""
    from precast_estimator.services.quote_types import TruckProfile
    return TruckProfile()


# ---------------------------------------------------------------------------
# Pricing engine
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def pricing_engine(index_table, formulas):
    """
    PricingEngine Jan 2024 -> Mar 2024 with ESPECIAL at -15 %, no commercial
    discount and multiplier 1.0.
    """
    from precast_estimator.services.price_index import PriceIndexResolver
    from precast_estimator.services.pricing_engine import PricingEngine
    from precast_estimator.services.quote_types import AdjustmentCategory, AdjustmentScale
    return PricingEngine(
        PriceIndexResolver(index_table),
        AdjustmentScale(category_pct={AdjustmentCategory.ESPECIAL: -0.15}),
        formulas,
        base_month=(2024, 1),
        target_month=(2024, 3),
    )


# ---------------------------------------------------------------------------
# Quotation requests
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_items():
    """
    Three lines:
      0: 2 x beam, UND, 1 000/u, 10 t each, 12 m          -> 20 t
      1: 3 x column, MT, 500/m, 8 m, 1.5 t/m, ESPECIAL   -> 24 m, 36 t
      2: 10 x slab, M2, 50/m2, 6 m x 1.2 m, 0.25 t/m2   -> 72 m2, 18 t
    """
    from precast_estimator.services.quote_types import (
        AdjustmentCategory, PieceLineItem, UnitOfMeasure,
    )
    return (
        PieceLineItem("beam", UnitOfMeasure.UND, 2, 1_000.0,
                      length_m=12.0, weight_per_piece_kg=10_000.0),
        PieceLineItem("column", UnitOfMeasure.MT, 3, 500.0,
                      adjustment_category=AdjustmentCategory.ESPECIAL,
                      length_m=8.0, weight_per_unit_tn=1.5),
        PieceLineItem("slab", UnitOfMeasure.M2, 10, 50.0,
                      length_m=6.0, width_m=1.2, weight_per_unit_tn=0.25),
    )


@pytest.fixture
def make_request(index_table, formulas, tariff_entries, truck, sample_items):
    """
    Factory for QuotationRequest built on the shared tables.

    Keyword arguments replace fields of the request; ``parameters`` may be
    a dict of CommercialParameters overrides. Defaults: 37 km, 10 % general
    expenses, zero assembly rates.
    """
    from precast_estimator.services.quotation_engine import QuotationRequest
    from precast_estimator.services.quote_types import (
        AdjustmentScale, AssemblyRates, CommercialParameters,
    )

    def _make(**overrides):
        params = overrides.pop("parameters", {})
        if isinstance(params, dict):
            params = replace(CommercialParameters(distance_km=37.0), **params)
        request = QuotationRequest(
            items=sample_items,
            base_price_date=date(2024, 1, 15),
            target_price_date=date(2024, 3, 1),
            price_indices=index_table,
            formulas=formulas,
            parameters=params,
            adjustments=AdjustmentScale(),
            truck=truck,
            assembly_rates=AssemblyRates(),
            transport_rate_table=tariff_entries,
        )
        return replace(request, **overrides)

    return _make


@pytest.fixture
def aggregator():
    from precast_estimator.services.quotation_engine import QuotationAggregator
    return QuotationAggregator()


@pytest.fixture(autouse=True)
def _reset_perf_tracker():
    """Keep the process-wide metrics singleton independent between tests."""
    from precast_estimator.services.perf_monitor import tracker
    tracker.reset()
    yield
    tracker.reset()
