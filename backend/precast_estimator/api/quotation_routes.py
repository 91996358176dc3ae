"""
Quotation API Routes

POST /api/quotations/calculate        — full engine response (before tax)
POST /api/quotations/summary          — engine response + extras, margin, payment term, tax
POST /api/quotations/base-price       — BOM base price per unit of measure
POST /api/quotations/units-per-truck  — how many identical pieces fit on one truck

Endpoints are sync so each calculation runs in its own worker thread.
Engine errors propagate to the handlers registered in main.py.
"""
import logging
from dataclasses import replace
from typing import Optional

from fastapi import APIRouter, Depends, Request

from precast_estimator import config
from precast_estimator.models.quote_schema import (
    BasePriceRequestIn,
    QuotationRequestIn,
    QuoteSummaryRequestIn,
    UnitsPerTruckRequestIn,
)
from precast_estimator.services.quotation_engine import QuotationAggregator

router = APIRouter(prefix="/api/quotations", tags=["Quotations"])
logger = logging.getLogger("precast-api.quotations")


def _timeout() -> Optional[float]:
    return config.CALCULATION_TIMEOUT_S if config.CALCULATION_TIMEOUT_S > 0 else None


def get_aggregator() -> QuotationAggregator:
    """One stateless aggregator per request; overridable in tests."""
    return QuotationAggregator()


def _run_calculation(req: QuotationRequestIn, request: Request, aggregator: QuotationAggregator):
    logger.debug("calculation requested: %d items", len(req.items))
    domain = req.to_domain()
    if domain.quotation_id is None:
        # Log lines of this calculation share the request id
        domain = replace(domain, quotation_id=getattr(request.state, "request_id", None))
    return aggregator.calculate(domain, timeout_s=_timeout())


@router.post("/calculate")
def calculate_quotation(
    req: QuotationRequestIn,
    request: Request,
    aggregator: QuotationAggregator = Depends(get_aggregator),
):
    """Materials, transport, assembly, complementary works and general expenses."""
    result = _run_calculation(req, request, aggregator)
    return result.as_dict()


@router.post("/summary")
def summarize(
    req: QuoteSummaryRequestIn,
    request: Request,
    aggregator: QuotationAggregator = Depends(get_aggregator),
):
    """Engine totals closed out with extras, margin, payment term and tax."""
    from precast_estimator.services.summary_engine import summarize_quotation

    result = _run_calculation(req.quotation, request, aggregator)
    summary = summarize_quotation(result.totals, req.extras.to_domain(), req.terms.to_domain())
    body = result.as_dict()
    body["summary"] = summary.as_dict()
    return body


@router.post("/base-price")
def base_price(req: BasePriceRequestIn):
    """Base price per unit of measure from a bill of materials plus plant process."""
    from precast_estimator.services.pricing_engine import BomPriceCalculator

    result = BomPriceCalculator().base_price_per_unit(
        req.bom_components(),
        req.material_prices,
        req.process_parameters(),
        req.tech_data(),
        family_alpha=req.family_alpha,
    )
    return result.as_dict()


@router.post("/units-per-truck")
def units_per_truck(req: UnitsPerTruckRequestIn):
    """Units of one piece type that fit on a truck, with the per-constraint counts."""
    from precast_estimator.services.packing_capacity import capacity_breakdown

    return capacity_breakdown(
        req.deck.to_domain(),
        req.max_payload_tn,
        req.piece.to_domain(),
        req.rules.to_domain(),
    )
