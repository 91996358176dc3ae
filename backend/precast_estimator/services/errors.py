"""
Error taxonomy for the quotation engine.

Every failure the engine can raise derives from ``QuoteEngineError`` so the
HTTP layer (and any other caller) can catch one base class and render the
``code`` / ``detail`` / ``issues`` triple verbatim.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


@dataclass(frozen=True)
class ValidationIssue:
    """One structural problem found in a request, addressed by a dotted path."""
    path: str
    code: str
    message: str = ""

    def as_dict(self) -> Dict[str, str]:
        return {"path": self.path, "code": self.code, "message": self.message}


class QuoteEngineError(Exception):
    """Base class for every error raised by the engine."""

    code: str = "quote_engine_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def as_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.detail}


class ValidationError(QuoteEngineError):
    """Malformed or missing required fields. Carries every issue found."""

    code = "validation_error"

    def __init__(self, issues: Sequence[ValidationIssue], detail: Optional[str] = None) -> None:
        self.issues: List[ValidationIssue] = list(issues)
        if detail is None:
            detail = f"{len(self.issues)} validation issue(s): " + "; ".join(
                f"{i.path} ({i.code})" for i in self.issues
            )
        super().__init__(detail)

    def as_dict(self) -> Dict[str, Any]:
        body = super().as_dict()
        body["issues"] = [i.as_dict() for i in self.issues]
        return body


class InvalidLineItem(ValidationError):
    """A line item has a non-positive quantity or unit price."""

    code = "invalid_line_item"


class MissingPriceIndex(QuoteEngineError):
    code = "missing_price_index"

    def __init__(self, series: str, year: int, month: int) -> None:
        self.series = series
        self.year = year
        self.month = month
        super().__init__(f"No index value for series '{series}' at {year:04d}-{month:02d}")


class OversizedPiece(QuoteEngineError):
    code = "oversized_piece"

    def __init__(self, description: str, reason: str) -> None:
        self.description = description
        self.reason = reason
        super().__init__(f"Piece '{description}' cannot be loaded: {reason}")


class MissingTariff(QuoteEngineError):
    code = "missing_tariff"

    def __init__(self, length_category: str, distance_km: float, reason: str = "") -> None:
        self.length_category = length_category
        self.distance_km = distance_km
        msg = f"No transport tariff for category {length_category} at {distance_km:g} km"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class ConfigurationError(QuoteEngineError):
    """A rate table, scale or formula is internally inconsistent."""

    code = "configuration_error"


class CalculationTimeout(QuoteEngineError):
    """The caller's deadline expired before the calculation finished."""

    code = "calculation_timeout"

    def __init__(self, validated_lines: Sequence[int], stage: str) -> None:
        self.validated_lines: List[int] = list(validated_lines)
        self.stage = stage
        super().__init__(
            f"Calculation timed out during {stage}; "
            f"{len(self.validated_lines)} line(s) validated"
        )

    def as_dict(self) -> Dict[str, Any]:
        body = super().as_dict()
        body["stage"] = self.stage
        body["validated_lines"] = self.validated_lines
        return body
