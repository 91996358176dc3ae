"""
Quote summary — the commercial close-out applied after the engine totals.

  subtotal = grand_total_before_tax + engineering + metallic inserts
             + waterproofing + other costs
  margin   = subtotal x margin_pct
  taxable  = (subtotal + margin) x (1 - cash discount | + deferred surcharge)
  taxes    = taxable x tax_rate
  total    = taxable + taxes
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

from precast_estimator import config
from precast_estimator.services.errors import ConfigurationError
from precast_estimator.services.quotation_engine import QuotationTotals
from precast_estimator.services.quote_types import require_exhaustive


class PaymentTerm(str, Enum):
    CASH = "CASH"
    DEFERRED = "DEFERRED"
    STANDARD = "STANDARD"


@dataclass(frozen=True)
class OtherCost:
    description: str
    amount: float


@dataclass(frozen=True)
class QuoteExtras:
    engineering: float = 0.0
    metallic_inserts: float = 0.0
    waterproofing: float = 0.0
    other_costs: Tuple[OtherCost, ...] = ()

    @property
    def total(self) -> float:
        return (
            self.engineering
            + self.metallic_inserts
            + self.waterproofing
            + sum(c.amount for c in self.other_costs)
        )


@dataclass(frozen=True)
class SummaryTerms:
    margin_pct: float = 0.0
    payment_term: PaymentTerm = PaymentTerm.STANDARD
    cash_discount_pct: float = 0.0
    deferred_surcharge_pct: float = 0.0
    tax_rate: float = config.DEFAULT_TAX_RATE

    def __post_init__(self) -> None:
        for name in ("margin_pct", "cash_discount_pct", "deferred_surcharge_pct", "tax_rate"):
            value = getattr(self, name)
            if not math.isfinite(value) or not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} = {value} outside [0, 1]")


@dataclass(frozen=True)
class QuoteSummary:
    grand_total_before_tax: float
    extras_total: float
    subtotal: float
    margin_amount: float
    payment_adjustment: float
    taxable_amount: float
    taxes: float
    total: float
    payment_term: PaymentTerm

    def as_dict(self) -> Dict[str, object]:
        m = config.MONEY_DECIMALS
        return {
            "grand_total_before_tax": round(self.grand_total_before_tax, m),
            "extras_total": round(self.extras_total, m),
            "subtotal": round(self.subtotal, m),
            "margin_amount": round(self.margin_amount, m),
            "payment_term": self.payment_term.value,
            "payment_adjustment": round(self.payment_adjustment, m),
            "taxable_amount": round(self.taxable_amount, m),
            "taxes": round(self.taxes, m),
            "total": round(self.total, m),
        }


# Signed payment-term percentage, one entry per PaymentTerm member
_PAYMENT_SIGN = {
    PaymentTerm.CASH: -1.0,
    PaymentTerm.DEFERRED: 1.0,
    PaymentTerm.STANDARD: 0.0,
}
require_exhaustive(_PAYMENT_SIGN, PaymentTerm, "_PAYMENT_SIGN")


def _payment_pct(terms: SummaryTerms) -> float:
    sign = _PAYMENT_SIGN[terms.payment_term]
    if sign < 0:
        return sign * terms.cash_discount_pct
    return sign * terms.deferred_surcharge_pct


def summarize_quotation(totals: QuotationTotals, extras: QuoteExtras, terms: SummaryTerms) -> QuoteSummary:
    subtotal = totals.grand_total + extras.total
    margin = subtotal * terms.margin_pct
    with_margin = subtotal + margin
    adjustment = with_margin * _payment_pct(terms)
    taxable = with_margin + adjustment
    taxes = taxable * terms.tax_rate
    return QuoteSummary(
        grand_total_before_tax=totals.grand_total,
        extras_total=extras.total,
        subtotal=subtotal,
        margin_amount=margin,
        payment_adjustment=adjustment,
        taxable_amount=taxable,
        taxes=taxes,
        total=taxable + taxes,
        payment_term=terms.payment_term,
    )
