"""
test_summary_engine.py — Extras, margin, payment terms and tax on top of the
engine's grand total.
"""

import pytest

from precast_estimator.services.errors import ConfigurationError
from precast_estimator.services.quotation_engine import QuotationTotals
from precast_estimator.services.summary_engine import (
    OtherCost,
    PaymentTerm,
    QuoteExtras,
    SummaryTerms,
    summarize_quotation,
)


@pytest.fixture
def totals():
    """Grand total before tax: 10 000."""
    return QuotationTotals(
        materials_subtotal=8_000.0,
        transport_total=1_000.0,
        assembly_total=0.0,
        complementary_total=90.91,
        general_expenses=909.09,
        grand_total=10_000.0,
    )


@pytest.fixture
def extras():
    """500 + 300 + 200 + (100 + 900) = 2 000."""
    return QuoteExtras(
        engineering=500.0,
        metallic_inserts=300.0,
        waterproofing=200.0,
        other_costs=(OtherCost("permits", 100.0), OtherCost("cleaning", 900.0)),
    )


class TestSummary:

    def test_standard_terms(self, totals, extras):
        """
        subtotal 12 000, margin 20 % = 2 400, taxable 14 400,
        tax 21 % = 3 024, total 17 424.
        """
        summary = summarize_quotation(totals, extras, SummaryTerms(margin_pct=0.20))
        assert summary.subtotal == pytest.approx(12_000.0)
        assert summary.margin_amount == pytest.approx(2_400.0)
        assert summary.payment_adjustment == 0.0
        assert summary.taxable_amount == pytest.approx(14_400.0)
        assert summary.taxes == pytest.approx(3_024.0)
        assert summary.total == pytest.approx(17_424.0)

    def test_cash_discount(self, totals, extras):
        """14 400 x (1 - 0.05) = 13 680."""
        terms = SummaryTerms(margin_pct=0.20, payment_term=PaymentTerm.CASH,
                             cash_discount_pct=0.05, deferred_surcharge_pct=0.10)
        summary = summarize_quotation(totals, extras, terms)
        assert summary.payment_adjustment == pytest.approx(-720.0)
        assert summary.taxable_amount == pytest.approx(13_680.0)

    def test_deferred_surcharge(self, totals, extras):
        """14 400 x 1.10 = 15 840."""
        terms = SummaryTerms(margin_pct=0.20, payment_term=PaymentTerm.DEFERRED,
                             cash_discount_pct=0.05, deferred_surcharge_pct=0.10)
        assert summarize_quotation(totals, extras, terms).taxable_amount == pytest.approx(15_840.0)

    def test_no_extras_no_margin(self, totals):
        summary = summarize_quotation(totals, QuoteExtras(), SummaryTerms(tax_rate=0.0))
        assert summary.total == pytest.approx(10_000.0)

    @pytest.mark.parametrize("field", ["margin_pct", "cash_discount_pct", "tax_rate"])
    def test_out_of_range_rejected(self, field):
        with pytest.raises(ConfigurationError):
            SummaryTerms(**{field: 1.5})

    def test_as_dict(self, totals, extras):
        body = summarize_quotation(totals, extras, SummaryTerms()).as_dict()
        assert body["payment_term"] == "STANDARD"
        assert body["total"] == 14_520.0
