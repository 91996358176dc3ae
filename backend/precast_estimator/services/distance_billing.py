"""
DistanceBillingCalculator — real route distance to billed distance.

billed = ceil(real / step) x step, with real == 0 billed as 0 (no-charge case).
"""
import math

from precast_estimator import config
from precast_estimator.services.errors import ValidationError, ValidationIssue

# Absorbs float noise in real / step so exact multiples are not pushed up a step
_EPSILON_KM = 1e-9


def billed_distance(real_distance_km: float, step_km: float = config.DISTANCE_BILLING_STEP_KM) -> float:
    """
    Round a real distance up to the next billing step.

    >>> billed_distance(37)
    50.0
    >>> billed_distance(101)
    150.0
    >>> billed_distance(0)
    0.0
    """
    if real_distance_km is None or not math.isfinite(real_distance_km) or real_distance_km < 0:
        raise ValidationError([
            ValidationIssue("parameters.distance_km", ">= 0", f"got {real_distance_km!r}")
        ])
    if step_km <= 0:
        raise ValidationError([ValidationIssue("step_km", "> 0", f"got {step_km!r}")])
    if real_distance_km == 0:
        return 0.0
    steps = math.ceil(real_distance_km / step_km - _EPSILON_KM)
    billed = max(steps, 1) * step_km
    if billed < real_distance_km:
        billed += step_km
    return float(billed)
