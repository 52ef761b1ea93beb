"""TTB endpoints.

Opening balances, the reconciliation summary for a date, committed
reconciliation snapshots and legacy batches.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from api.services.container import Services, get_services
from core.models.ttb import (
    DateValue,
    OpeningBalances,
    OpeningBalanceSnapshot,
    ReconciliationResult,
    ReconciliationSnapshot,
    SystemInventory,
    TTBBase,
    TaxClass,
    TaxClassReconciliation,
)
from core.observability.logging import get_logger
from inventory.aggregator import liters_to_gallons
from reconciliation.engine import reconcile, reconcile_spirits


router = APIRouter()
logger = get_logger(__name__)


class OpeningBalancesUpdate(TTBBase):
    """Request to replace the organization's opening balances."""
    date: DateValue = Field(..., description="Opening balance date (YYYY-MM-DD)")
    balances: OpeningBalances = Field(default_factory=OpeningBalances)
    reconciliation_notes: Optional[str] = None


class ReconciliationSummaryResponse(TTBBase):
    """Opening balances vs system inventory as of a date."""
    as_of_date: date
    opening_balance_date: Optional[date] = None
    opening_balances: OpeningBalances
    system_inventory: SystemInventory
    reconciliation: ReconciliationResult
    spirits: List[TaxClassReconciliation] = Field(default_factory=list)
    legacy_batch_gallons: Decimal = Decimal("0")


class LegacyBatchResponse(TTBBase):
    id: str
    batch_number: str
    name: str
    product_type: str
    tax_class: TaxClass
    vessel_id: Optional[str] = None
    volume_liters: Decimal
    start_date: date
    notes: Optional[str] = None
    created_at: str


@router.get("/opening-balances", response_model=OpeningBalanceSnapshot)
def get_opening_balances(services: Services = Depends(get_services)) -> OpeningBalanceSnapshot:
    """Current opening balances; all zeros with no date when never saved."""
    return services.cache.get_opening_balances() or OpeningBalanceSnapshot()


@router.put("/opening-balances", response_model=OpeningBalanceSnapshot)
def put_opening_balances(
    request: OpeningBalancesUpdate,
    services: Services = Depends(get_services),
) -> OpeningBalanceSnapshot:
    """Replace the opening balances outside the wizard."""
    if request.date is None:
        raise HTTPException(status_code=422, detail="date is required")

    services.repository.save_opening_balances(request.date, request.balances, request.reconciliation_notes)
    services.cache.invalidate()
    logger.info("Opening balances replaced outside onboarding", extra_fields={"as_of_date": request.date.isoformat()})
    return services.cache.get_opening_balances()


@router.get("/reconciliation-summary", response_model=ReconciliationSummaryResponse)
def get_reconciliation_summary(
    as_of_date: Optional[date] = None,
    services: Services = Depends(get_services),
) -> ReconciliationSummaryResponse:
    """Reconcile the saved opening balances against inventory as of a date."""
    if as_of_date is None:
        raise HTTPException(status_code=400, detail="as_of_date is required")

    snapshot = services.cache.get_opening_balances() or OpeningBalanceSnapshot()
    inventory = services.cache.get_system_inventory_as_of(as_of_date)
    result = reconcile(snapshot.balances, inventory)

    legacy_by_class: Dict[TaxClass, Decimal] = {}
    for batch in services.repository.list_legacy_batches():
        tax_class = TaxClass(batch["tax_class"])
        gallons = liters_to_gallons(Decimal(batch["initial_volume_liters"]))
        legacy_by_class[tax_class] = legacy_by_class.get(tax_class, Decimal("0")) + gallons

    return ReconciliationSummaryResponse(
        as_of_date=as_of_date,
        opening_balance_date=snapshot.date,
        opening_balances=snapshot.balances,
        system_inventory=inventory,
        reconciliation=result,
        spirits=reconcile_spirits(snapshot.balances.spirits, legacy_by_class),
        legacy_batch_gallons=sum(legacy_by_class.values(), Decimal("0")),
    )


@router.get("/reconciliations", response_model=List[ReconciliationSnapshot])
def list_reconciliations(services: Services = Depends(get_services)) -> List[ReconciliationSnapshot]:
    return services.repository.list_reconciliation_snapshots()


@router.get("/reconciliations/{snapshot_id}", response_model=ReconciliationSnapshot)
def get_reconciliation(snapshot_id: int, services: Services = Depends(get_services)) -> ReconciliationSnapshot:
    snapshot = services.repository.get_reconciliation_snapshot(snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Reconciliation {snapshot_id} not found")
    return snapshot


@router.get("/legacy-batches", response_model=List[LegacyBatchResponse])
def list_legacy_batches(services: Services = Depends(get_services)) -> List[LegacyBatchResponse]:
    return [
        LegacyBatchResponse(
            id=row["id"],
            batch_number=row["batch_number"],
            name=row["name"],
            product_type=row["product_type"],
            tax_class=row["tax_class"],
            vessel_id=row["vessel_id"],
            volume_liters=row["initial_volume_liters"],
            start_date=row["start_date"],
            notes=row["notes"],
            created_at=row["created_at"],
        )
        for row in services.repository.list_legacy_batches()
    ]
