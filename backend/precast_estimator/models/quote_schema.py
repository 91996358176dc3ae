"""
Request models for the quotation API.

Types stay loose on purpose where the engine validates: the engine collects
every issue in one pass and reports them together, which a pydantic
constraint would short-circuit. Each model converts to its frozen engine
counterpart through ``to_domain()``.
"""
from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from precast_estimator import config
from precast_estimator.services.packing_capacity import PieceGeometry
from precast_estimator.services.pricing_engine import BomComponent, PieceTechData, ProcessParameters
from precast_estimator.services.quotation_engine import QuotationRequest
from precast_estimator.services.quote_types import (
    AdjustmentCategory,
    AdjustmentScale,
    AssemblyRates,
    CommercialParameters,
    ComplementaryWorkLine,
    ComplementaryWorks,
    FormulaTerm,
    IndexPoint,
    IndexSeries,
    LengthCategory,
    PackingRules,
    PieceLineItem,
    PolynomialFormula,
    PriceIndexTable,
    TariffEntry,
    TruckDeck,
    TruckProfile,
    UnitOfMeasure,
)
from precast_estimator.services.summary_engine import OtherCost, PaymentTerm, QuoteExtras, SummaryTerms


# ── Line items ────────────────────────────────────────────────────────────────

class PieceLineItemIn(BaseModel):
    description: str
    unit: UnitOfMeasure = Field(..., description="UND | MT | M2")
    quantity: float
    unit_price: float = Field(..., description="Price per unit of measure at the base month")
    adjustment_category: AdjustmentCategory = AdjustmentCategory.GENERAL
    length_m: Optional[float] = None
    width_m: Optional[float] = None
    height_m: Optional[float] = None
    weight_per_unit_tn: Optional[float] = Field(None, description="Tonnes per unit of measure")
    weight_per_piece_kg: Optional[float] = Field(None, description="UND lines only")
    individual_transport: bool = False
    units_per_truck: Optional[int] = None

    def to_domain(self) -> PieceLineItem:
        return PieceLineItem(**self.model_dump())


class ComplementaryWorkLineIn(BaseModel):
    description: str
    unit: UnitOfMeasure = UnitOfMeasure.UND
    quantity: float
    unit_price: float
    length_m: Optional[float] = None
    width_m: Optional[float] = None

    def to_domain(self) -> ComplementaryWorkLine:
        return ComplementaryWorkLine(**self.model_dump())


class ComplementaryWorksIn(BaseModel):
    bucket_1: List[ComplementaryWorkLineIn] = Field(default_factory=list)
    bucket_2: List[ComplementaryWorkLineIn] = Field(default_factory=list)

    def to_domain(self) -> ComplementaryWorks:
        return ComplementaryWorks(
            bucket_1=tuple(w.to_domain() for w in self.bucket_1),
            bucket_2=tuple(w.to_domain() for w in self.bucket_2),
        )


# ── Indices and escalation ────────────────────────────────────────────────────

class IndexPointIn(BaseModel):
    year: int
    month: int
    value: float


class IndexSeriesIn(BaseModel):
    name: str
    points: List[IndexPointIn]

    def to_domain(self) -> IndexSeries:
        return IndexSeries(
            name=self.name,
            points=tuple(IndexPoint(p.year, p.month, p.value) for p in self.points),
        )


class FormulaTermIn(BaseModel):
    series: str
    weight: float


class AdjustmentScaleIn(BaseModel):
    category_pct: Dict[AdjustmentCategory, float] = Field(
        default_factory=dict, description="Signed fractions, e.g. ESPECIAL: -0.15"
    )
    commercial_discount_pct: float = 0.0
    global_multiplier: float = 1.0

    def to_domain(self) -> AdjustmentScale:
        return AdjustmentScale(
            category_pct=dict(self.category_pct),
            commercial_discount_pct=self.commercial_discount_pct,
            global_multiplier=self.global_multiplier,
        )


# ── Freight ───────────────────────────────────────────────────────────────────

class TruckDeckIn(BaseModel):
    deck_length_m: float
    deck_width_m: float
    max_stack_height_m: float
    usable_volume_factor: float = 1.0

    def to_domain(self) -> TruckDeck:
        return TruckDeck(**self.model_dump())


class PackingRulesIn(BaseModel):
    min_gap_m: float = 0.1
    max_stack_layers: int = 1
    layer_height_m: Optional[float] = None

    def to_domain(self) -> PackingRules:
        return PackingRules(**self.model_dump())


class TruckProfileIn(BaseModel):
    name: str = "semi"
    max_weight_tn: float = config.DEFAULT_TRUCK_CAPACITY_TN
    min_billable_weight_tn: float = config.DEFAULT_MIN_BILLABLE_WEIGHT_TN
    max_length_category: LengthCategory = LengthCategory.OVER_30
    pieces_per_truck: Optional[int] = None
    escort_length_threshold_m: float = config.DEFAULT_ESCORT_LENGTH_THRESHOLD_M
    deck: Optional[TruckDeckIn] = None

    def to_domain(self) -> TruckProfile:
        data = self.model_dump(exclude={"deck"})
        return TruckProfile(deck=self.deck.to_domain() if self.deck else None, **data)


class TariffEntryIn(BaseModel):
    length_category: LengthCategory
    distance_km: float
    price_per_trip: float

    def to_domain(self) -> TariffEntry:
        return TariffEntry(**self.model_dump())


# ── Commercial parameters ─────────────────────────────────────────────────────

class CommercialParametersIn(BaseModel):
    general_expenses_pct: float = config.DEFAULT_GENERAL_EXPENSES_PCT
    truck_capacity_tn: float = config.DEFAULT_TRUCK_CAPACITY_TN
    enable_transport: bool = True
    enable_assembly: bool = True
    distance_km: float = 0.0
    assembly_days: float = 0.0
    crane_extra_days: float = 0.0
    crane_relocation_km: float = Field(0.0, description="Round-trip km already folded in")
    uses_extra_crane: bool = False
    length_category_override: Optional[LengthCategory] = None
    trips_override: Optional[float] = None

    def to_domain(self) -> CommercialParameters:
        return CommercialParameters(**self.model_dump())


class AssemblyRatesIn(BaseModel):
    per_ton_rate: float = config.REFERENCE_ASSEMBLY_RATES["per_ton_rate"]
    crew_day_rate: float = config.REFERENCE_ASSEMBLY_RATES["crew_day_rate"]
    crane_day_rate: float = config.REFERENCE_ASSEMBLY_RATES["crane_day_rate"]
    crane_relocation_rate: float = config.REFERENCE_ASSEMBLY_RATES["crane_relocation_rate"]

    def to_domain(self) -> AssemblyRates:
        return AssemblyRates(**self.model_dump())


# ── Quotation ─────────────────────────────────────────────────────────────────

class QuotationRequestIn(BaseModel):
    quotation_id: Optional[str] = None
    items: List[PieceLineItemIn]
    base_price_date: date
    target_price_date: Optional[date] = Field(
        None, description="Defaults to the latest month common to every formula series"
    )
    price_indices: List[IndexSeriesIn]
    formulas: Dict[AdjustmentCategory, List[FormulaTermIn]]
    parameters: CommercialParametersIn = Field(default_factory=CommercialParametersIn)
    adjustments: AdjustmentScaleIn = Field(default_factory=AdjustmentScaleIn)
    truck: TruckProfileIn = Field(default_factory=TruckProfileIn)
    assembly_rates: AssemblyRatesIn = Field(default_factory=AssemblyRatesIn)
    transport_rate_table: List[TariffEntryIn] = Field(default_factory=list)
    complementary_works: ComplementaryWorksIn = Field(default_factory=ComplementaryWorksIn)
    packing_rules: Optional[PackingRulesIn] = None

    def to_domain(self) -> QuotationRequest:
        """Build the frozen engine request; inconsistent tables raise ConfigurationError."""
        return QuotationRequest(
            items=tuple(i.to_domain() for i in self.items),
            base_price_date=self.base_price_date,
            target_price_date=self.target_price_date,
            price_indices=PriceIndexTable(series=tuple(s.to_domain() for s in self.price_indices)),
            formulas={
                category: PolynomialFormula(terms=tuple(FormulaTerm(t.series, t.weight) for t in terms))
                for category, terms in self.formulas.items()
            },
            parameters=self.parameters.to_domain(),
            adjustments=self.adjustments.to_domain(),
            truck=self.truck.to_domain(),
            assembly_rates=self.assembly_rates.to_domain(),
            transport_rate_table=tuple(t.to_domain() for t in self.transport_rate_table),
            complementary_works=self.complementary_works.to_domain(),
            packing_rules=self.packing_rules.to_domain() if self.packing_rules else None,
            quotation_id=self.quotation_id,
        )


# ── Summary ───────────────────────────────────────────────────────────────────

class OtherCostIn(BaseModel):
    description: str = ""
    amount: float


class QuoteExtrasIn(BaseModel):
    engineering: float = 0.0
    metallic_inserts: float = 0.0
    waterproofing: float = 0.0
    other_costs: List[OtherCostIn] = Field(default_factory=list)

    def to_domain(self) -> QuoteExtras:
        return QuoteExtras(
            engineering=self.engineering,
            metallic_inserts=self.metallic_inserts,
            waterproofing=self.waterproofing,
            other_costs=tuple(OtherCost(c.description, c.amount) for c in self.other_costs),
        )


class SummaryTermsIn(BaseModel):
    margin_pct: float = 0.0
    payment_term: PaymentTerm = PaymentTerm.STANDARD
    cash_discount_pct: float = 0.0
    deferred_surcharge_pct: float = 0.0
    tax_rate: float = config.DEFAULT_TAX_RATE

    def to_domain(self) -> SummaryTerms:
        return SummaryTerms(**self.model_dump())


class QuoteSummaryRequestIn(BaseModel):
    quotation: QuotationRequestIn
    extras: QuoteExtrasIn = Field(default_factory=QuoteExtrasIn)
    terms: SummaryTermsIn = Field(default_factory=SummaryTermsIn)


# ── Base price and units per truck ────────────────────────────────────────────

class BomComponentIn(BaseModel):
    material_id: int
    quantity_per_unit: float
    scrap_pct: float = Field(0.0, description="0-100")
    material_name: str = ""
    unit: str = ""


class ProcessParametersIn(BaseModel):
    curing_energy_per_tn: float = 0.0
    plant_overhead_per_tn: float = 0.0
    company_overhead_per_tn: float = 0.0
    profit_per_tn: float = 0.0
    engineering_per_tn: float = 0.0
    hour_price: float = 0.0
    hours_per_tn_steel: float = 0.0
    hours_per_m3_concrete: float = 0.0


class PieceTechDataIn(BaseModel):
    unit: UnitOfMeasure = UnitOfMeasure.UND
    weight_tn_per_unit: float = 0.0
    steel_kg_per_unit: float = 0.0
    concrete_m3_per_unit: float = 0.0


class BasePriceRequestIn(BaseModel):
    bom: List[BomComponentIn] = Field(default_factory=list)
    material_prices: Dict[int, float] = Field(default_factory=dict)
    process: ProcessParametersIn = Field(default_factory=ProcessParametersIn)
    tech: PieceTechDataIn = Field(default_factory=PieceTechDataIn)
    family_alpha: Optional[float] = None

    def bom_components(self) -> List[BomComponent]:
        return [BomComponent(**c.model_dump()) for c in self.bom]

    def process_parameters(self) -> ProcessParameters:
        return ProcessParameters(**self.process.model_dump())

    def tech_data(self) -> PieceTechData:
        return PieceTechData(**self.tech.model_dump())


class PieceGeometryIn(BaseModel):
    length_m: float
    width_m: float
    height_m: float
    weight_tn: float

    def to_domain(self) -> PieceGeometry:
        return PieceGeometry(**self.model_dump())


class UnitsPerTruckRequestIn(BaseModel):
    deck: TruckDeckIn
    piece: PieceGeometryIn
    rules: PackingRulesIn = Field(default_factory=PackingRulesIn)
    max_payload_tn: float = config.DEFAULT_TRUCK_CAPACITY_TN
