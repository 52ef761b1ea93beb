"""TTB data models - opening balances, reconciliation records, onboarding state.

These models are the data contract shared by the reconciliation engine,
the onboarding wizard, the persistence layer and the API. Wire format is
camelCase JSON (the shape stored in drafts and snapshots); Python code uses
snake_case attribute names.

Volumes are Decimal wine gallons for wine/cider tax classes and Decimal
proof gallons for spirits.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated, assert_never


# =============================================================================
# Value Parsers (handle form input: blank strings, floats, ints)
# =============================================================================

def _parse_volume(value):
    """Parse a volume, treating missing or blank input as zero."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("Volume must be a number")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if s == "":
            return Decimal("0")
        try:
            return Decimal(s)
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}")
    return value


def _parse_optional_decimal(value):
    """Parse an optional measurement (gravity, pH)."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    return _parse_volume(value)


def _parse_date(value):
    """Parse a calendar date; blank strings mean unset."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        # Accept full ISO timestamps as sent by browsers
        return datetime.fromisoformat(s).date()
    return value


VolumeValue = Annotated[Decimal, BeforeValidator(_parse_volume)]
OptionalDecimalValue = Annotated[Optional[Decimal], BeforeValidator(_parse_optional_decimal)]
DateValue = Annotated[Optional[date], BeforeValidator(_parse_date)]


# =============================================================================
# Tax Classes
# =============================================================================

class TaxClass(str, Enum):
    """Regulator-defined tax classes (TTB Form 5120.17 Part I)."""
    HARD_CIDER = "hardCider"
    WINE_UNDER_16 = "wineUnder16"
    WINE_16_TO_21 = "wine16To21"
    WINE_21_TO_24 = "wine21To24"
    SPARKLING_WINE = "sparklingWine"
    CARBONATED_WINE = "carbonatedWine"
    APPLE_BRANDY = "appleBrandy"
    GRAPE_SPIRITS = "grapeSpirits"

    @property
    def label(self) -> str:
        return TAX_CLASS_LABELS[self]

    @property
    def is_spirits(self) -> bool:
        return self in SPIRITS_TAX_CLASSES


class ProductType(str, Enum):
    """Batch product types."""
    CIDER = "cider"
    PERRY = "perry"
    WINE = "wine"
    BRANDY = "brandy"


TAX_CLASS_LABELS = {
    TaxClass.HARD_CIDER: "Hard Cider (<8.5% ABV)",
    TaxClass.WINE_UNDER_16: "Wine (<16% ABV)",
    TaxClass.WINE_16_TO_21: "Wine (16-21% ABV)",
    TaxClass.WINE_21_TO_24: "Wine (21-24% ABV)",
    TaxClass.SPARKLING_WINE: "Sparkling Wine",
    TaxClass.CARBONATED_WINE: "Carbonated Wine",
    TaxClass.APPLE_BRANDY: "Apple Brandy",
    TaxClass.GRAPE_SPIRITS: "Grape Spirits",
}

# Order fixes the reconciliation breakdown order
WINE_TAX_CLASSES = (
    TaxClass.HARD_CIDER,
    TaxClass.WINE_UNDER_16,
    TaxClass.WINE_16_TO_21,
    TaxClass.WINE_21_TO_24,
    TaxClass.SPARKLING_WINE,
    TaxClass.CARBONATED_WINE,
)

SPIRITS_TAX_CLASSES = (
    TaxClass.APPLE_BRANDY,
    TaxClass.GRAPE_SPIRITS,
)


def product_type_for(tax_class: TaxClass) -> ProductType:
    """Product type a legacy batch of the given tax class is recorded as."""
    match tax_class:
        case TaxClass.HARD_CIDER:
            return ProductType.CIDER
        case (
            TaxClass.WINE_UNDER_16
            | TaxClass.WINE_16_TO_21
            | TaxClass.WINE_21_TO_24
            | TaxClass.SPARKLING_WINE
            | TaxClass.CARBONATED_WINE
        ):
            return ProductType.WINE
        case TaxClass.APPLE_BRANDY | TaxClass.GRAPE_SPIRITS:
            return ProductType.BRANDY
        case _:
            assert_never(tax_class)


# =============================================================================
# Base Model
# =============================================================================

class TTBBase(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# =============================================================================
# Opening Balances
# =============================================================================

class TaxClassBalances(TTBBase):
    """Wine-gallon balances for each wine/cider tax class (bulk or bottled)."""
    hard_cider: VolumeValue = Field(default=Decimal("0"), ge=0, alias="hardCider")
    wine_under_16: VolumeValue = Field(default=Decimal("0"), ge=0, alias="wineUnder16")
    wine_16_to_21: VolumeValue = Field(default=Decimal("0"), ge=0, alias="wine16To21")
    wine_21_to_24: VolumeValue = Field(default=Decimal("0"), ge=0, alias="wine21To24")
    sparkling_wine: VolumeValue = Field(default=Decimal("0"), ge=0, alias="sparklingWine")
    carbonated_wine: VolumeValue = Field(default=Decimal("0"), ge=0, alias="carbonatedWine")

    def get(self, tax_class: TaxClass) -> Decimal:
        """Balance for a wine tax class (spirits classes are always zero here)."""
        field_name = _WINE_FIELDS.get(tax_class)
        if field_name is None:
            return Decimal("0")
        return getattr(self, field_name)

    def total(self) -> Decimal:
        return sum((self.get(tc) for tc in WINE_TAX_CLASSES), Decimal("0"))


_WINE_FIELDS = {
    TaxClass.HARD_CIDER: "hard_cider",
    TaxClass.WINE_UNDER_16: "wine_under_16",
    TaxClass.WINE_16_TO_21: "wine_16_to_21",
    TaxClass.WINE_21_TO_24: "wine_21_to_24",
    TaxClass.SPARKLING_WINE: "sparkling_wine",
    TaxClass.CARBONATED_WINE: "carbonated_wine",
}


class SpiritsBalances(TTBBase):
    """Proof-gallon balances for spirits, tracked apart from wine totals."""
    apple_brandy: VolumeValue = Field(default=Decimal("0"), ge=0, alias="appleBrandy")
    grape_spirits: VolumeValue = Field(default=Decimal("0"), ge=0, alias="grapeSpirits")

    def get(self, tax_class: TaxClass) -> Decimal:
        if tax_class == TaxClass.APPLE_BRANDY:
            return self.apple_brandy
        if tax_class == TaxClass.GRAPE_SPIRITS:
            return self.grape_spirits
        return Decimal("0")

    def total(self) -> Decimal:
        return self.apple_brandy + self.grape_spirits


class OpeningBalances(TTBBase):
    """Regulator-reported balances split into bulk, bottled and spirits."""
    bulk: TaxClassBalances = Field(default_factory=TaxClassBalances)
    bottled: TaxClassBalances = Field(default_factory=TaxClassBalances)
    spirits: SpiritsBalances = Field(default_factory=SpiritsBalances)

    def ttb_balance(self, tax_class: TaxClass) -> Decimal:
        """Bulk + bottled balance for one wine tax class."""
        return self.bulk.get(tax_class) + self.bottled.get(tax_class)

    def wine_total(self) -> Decimal:
        return self.bulk.total() + self.bottled.total()

    def spirits_total(self) -> Decimal:
        return self.spirits.total()


class OpeningBalanceSnapshot(TTBBase):
    """The organization's current opening balance (one per organization)."""
    date: DateValue = None
    balances: OpeningBalances = Field(default_factory=OpeningBalances)
    reconciliation_notes: Optional[str] = None


# =============================================================================
# System Inventory (aggregator output)
# =============================================================================

class BatchDetail(TTBBase):
    """Batch or packaged lot backing a tax class's system inventory."""
    id: str
    name: str
    batch_number: str
    vessel_id: Optional[str] = None
    vessel_name: Optional[str] = None
    volume_liters: VolumeValue = Decimal("0")
    volume_gallons: VolumeValue = Decimal("0")
    type: str = "bulk"  # bulk | packaged
    package_info: Optional[str] = None


class SystemTaxClassInventory(TTBBase):
    """System-tracked inventory for one tax class."""
    tax_class: TaxClass
    label: str
    volume: VolumeValue = Decimal("0")
    bulk: VolumeValue = Decimal("0")
    packaged: VolumeValue = Decimal("0")
    batches: List[BatchDetail] = Field(default_factory=list)


class SystemInventory(TTBBase):
    """Inventory computed by the aggregator as of a date."""
    as_of_date: DateValue = None
    bulk: VolumeValue = Decimal("0")
    packaged: VolumeValue = Decimal("0")
    total: VolumeValue = Decimal("0")
    by_tax_class: List[SystemTaxClassInventory] = Field(default_factory=list)

    def volume_for(self, tax_class: TaxClass) -> Decimal:
        """Volume reported for a tax class, 0 if the aggregator has no entry."""
        for entry in self.by_tax_class:
            if entry.tax_class == tax_class:
                return entry.volume
        return Decimal("0")


# =============================================================================
# Reconciliation
# =============================================================================

class TaxClassReconciliation(TTBBase):
    """Regulator vs system comparison for one tax class."""
    tax_class: TaxClass
    label: str
    ttb_balance: Decimal
    system_inventory: Decimal
    difference: Decimal
    is_reconciled: bool


class ReconciliationTotals(TTBBase):
    """Overall regulator vs system totals."""
    ttb_total: Decimal = Decimal("0")
    system_total: Decimal = Decimal("0")
    difference: Decimal = Decimal("0")
    is_fully_reconciled: bool = True


class ReconciliationResult(TTBBase):
    """Output of the reconciliation engine."""
    by_tax_class: List[TaxClassReconciliation] = Field(default_factory=list)
    totals: ReconciliationTotals = Field(default_factory=ReconciliationTotals)


# =============================================================================
# Legacy Batches
# =============================================================================

class LegacyBatchInput(TTBBase):
    """A synthetic batch representing inventory that predates the system."""
    name: str = ""
    volume_gallons: VolumeValue = Decimal("0")
    tax_class: TaxClass = TaxClass.HARD_CIDER
    notes: str = ""
    original_gravity: OptionalDecimalValue = None
    final_gravity: OptionalDecimalValue = None
    ph: OptionalDecimalValue = None
    vessel_id: Optional[str] = None
    start_date: DateValue = None

    @computed_field
    @property
    def product_type(self) -> ProductType:
        return product_type_for(self.tax_class)


# =============================================================================
# Reconciliation Snapshot (immutable audit record)
# =============================================================================

class SnapshotTotals(TTBBase):
    ttb_balance: Decimal
    current_inventory: Decimal
    legacy_batches: Decimal
    difference: Decimal


class SnapshotBreakdown(TTBBase):
    bulk_inventory: Decimal
    packaged_inventory: Decimal


class SnapshotTaxClassRow(TTBBase):
    """Per-tax-class line of a reconciliation snapshot."""
    key: TaxClass
    label: str
    type: str = "wine"  # wine | spirits
    ttb_total: Decimal
    current_inventory: Decimal
    legacy_batches: Decimal
    difference: Decimal
    is_reconciled: bool


class ReconciliationSummary(TTBBase):
    opening_balance_date: DateValue = None
    totals: SnapshotTotals
    breakdown: SnapshotBreakdown
    tax_classes: List[SnapshotTaxClassRow] = Field(default_factory=list)


class ReconciliationSnapshot(TTBBase):
    """Historical record of one completed reconciliation. Never mutated."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, frozen=True)

    id: Optional[int] = None
    name: str
    reconciliation_date: DateValue = None
    notes: Optional[str] = None
    discrepancy_explanation: Optional[str] = None
    summary: ReconciliationSummary
    created_at: Optional[datetime] = None


# =============================================================================
# Onboarding Wizard State
# =============================================================================

# Bump when the draft shape changes; older drafts are discarded on load
ONBOARDING_SCHEMA_VERSION = 1


class Step1Data(TTBBase):
    date: DateValue = None
    balances: OpeningBalances = Field(default_factory=OpeningBalances)
    reconciliation_notes: str = ""


class Step2Data(TTBBase):
    calculated: bool = False
    ttb_total: Decimal = Decimal("0")
    system_total: Decimal = Decimal("0")
    difference: Decimal = Decimal("0")
    by_tax_class: List[TaxClassReconciliation] = Field(default_factory=list)
    system_inventory: Optional[SystemInventory] = None
    input_fingerprint: Optional[str] = None


class Step3Data(TTBBase):
    legacy_batches: List[LegacyBatchInput] = Field(default_factory=list)
    discrepancy_notes: str = ""


class Step4Data(TTBBase):
    confirmed: bool = False
    commit_id: Optional[str] = None
    superseded_commit_ids: List[str] = Field(default_factory=list)


class OnboardingState(TTBBase):
    """Whole in-progress wizard state, serialized as one draft."""
    schema_version: int = ONBOARDING_SCHEMA_VERSION
    current_step: int = Field(default=1, ge=1, le=4)
    step1: Step1Data = Field(default_factory=Step1Data)
    step2: Step2Data = Field(default_factory=Step2Data)
    step3: Step3Data = Field(default_factory=Step3Data)
    step4: Step4Data = Field(default_factory=Step4Data)
