"""
Engine configuration — reference defaults and environment-driven settings.

The constants below are immutable reference values taken from the plant's
historical spreadsheets. The engine never reads them implicitly: request
models use them only to fill optional fields, and every rate table is
injected per calculation.
"""
from __future__ import annotations

import os
from types import MappingProxyType
from typing import Mapping, Optional

from dotenv import load_dotenv

load_dotenv()


# ── Freight ────────────────────────────────────────────────────────────────────

# Rated truck capacity ("aforo"), tonnes
DEFAULT_TRUCK_CAPACITY_TN: float = 26.0

# Carrier minimum-load rule: below this the difference is billed as false tonnage
DEFAULT_MIN_BILLABLE_WEIGHT_TN: float = 20.0

# Pieces longer than this travel with an escort vehicle
DEFAULT_ESCORT_LENGTH_THRESHOLD_M: float = 13.5

# Route distances are billed in steps of this many km
DISTANCE_BILLING_STEP_KM: float = 50.0

# Upper length bound per length category (metres); None = unbounded
LENGTH_CATEGORY_BOUNDS_M: Mapping[str, Optional[float]] = MappingProxyType({
    "13_5m": 13.5,
    "16m": 16.0,
    "26m": 26.0,
    "30m": 30.0,
    ">30m": None,
})


# ── Commercial ────────────────────────────────────────────────────────────────

DEFAULT_GENERAL_EXPENSES_PCT: float = 0.10
DEFAULT_TAX_RATE: float = 0.21

# Sane bounds for signed adjustment percentages (exclusive low, inclusive high)
ADJUSTMENT_PCT_MIN: float = -1.0
ADJUSTMENT_PCT_MAX: float = 1.0

# Tolerance for polynomial weights summing to 1
FORMULA_WEIGHT_TOLERANCE: float = 1e-6


# ── Assembly reference rates (ARS, spreadsheet snapshot) ──────────────────────

REFERENCE_ASSEMBLY_RATES: Mapping[str, float] = MappingProxyType({
    "per_ton_rate": 85_381.0,
    "crew_day_rate": 4_269_062.0,
    "crane_day_rate": 2_206_451.0,
    "crane_relocation_rate": 2_625.0,
})


# ── Output rounding ───────────────────────────────────────────────────────────

MONEY_DECIMALS: int = 2
WEIGHT_DECIMALS: int = 3


# ── Runtime settings (environment) ────────────────────────────────────────────

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json").lower()

# Caller-imposed ceiling for one calculation, seconds (0 disables it)
CALCULATION_TIMEOUT_S: float = float(os.getenv("CALCULATION_TIMEOUT_S", "5.0"))

CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

API_VERSION: str = "1.0.0"
