"""System inventory aggregation as of a past date.

Reconstructs what the system held on a date from current records:
- Bulk: each batch's initial volume minus packaging draws and losses
  dated on or before the date
- Packaged: units on hand now plus units distributed after the date

Legacy batches are excluded; they exist to explain gaps, not to be
counted as tracked inventory.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List

from core.models.ttb import (
    BatchDetail,
    SystemInventory,
    SystemTaxClassInventory,
    TaxClass,
)
from core.observability.logging import get_logger, with_correlation
from inventory.db import LITERS_PER_GALLON_FACTOR, InventoryRepository

logger = get_logger(__name__)

ML_PER_GALLON = Decimal("3785.41")
GALLON_PRECISION = Decimal("0.001")
ZERO = Decimal("0")


def liters_to_gallons(liters: Decimal) -> Decimal:
    return (Decimal(liters) * LITERS_PER_GALLON_FACTOR).quantize(GALLON_PRECISION)


def ml_to_gallons(ml: Decimal) -> Decimal:
    return (Decimal(ml) / ML_PER_GALLON).quantize(GALLON_PRECISION)


class InventoryAggregator:
    """Computes SystemInventory from repository records."""

    def __init__(self, repository: InventoryRepository):
        self.repository = repository

    def _bulk_liters_by_batch(self, batches: List[dict], as_of_date: date) -> Dict[str, Decimal]:
        removed: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for removal in self.repository.list_volume_removals(on_or_before=as_of_date):
            removed[removal["batch_id"]] += Decimal(removal["volume_liters"])

        bulk = {}
        for batch in batches:
            remaining = Decimal(batch["initial_volume_liters"]) - removed[batch["id"]]
            bulk[batch["id"]] = max(remaining, ZERO)
        return bulk

    def _packaged_ml_by_item(self, batch_ids: set, as_of_date: date) -> Dict[str, dict]:
        distributed_after: Dict[str, int] = defaultdict(int)
        for dist in self.repository.list_distributions(after=as_of_date):
            distributed_after[dist["packaged_item_id"]] += dist["quantity"]

        items = {}
        for item in self.repository.list_packaged_items(packaged_on_or_before=as_of_date):
            if item["batch_id"] not in batch_ids:
                continue
            units = item["current_quantity"] + distributed_after[item["id"]]
            items[item["id"]] = {
                **item,
                "units": units,
                "volume_ml": Decimal(units) * Decimal(item["package_size_ml"]),
            }
        return items

    def get_system_inventory_as_of(self, as_of_date: date) -> SystemInventory:
        """Aggregate bulk and packaged inventory per tax class as of a date."""
        with with_correlation(as_of_date=as_of_date.isoformat()):
            batches = self.repository.list_batches(include_legacy=False, started_on_or_before=as_of_date)
            bulk_liters = self._bulk_liters_by_batch(batches, as_of_date)
            packaged = self._packaged_ml_by_item({b["id"] for b in batches}, as_of_date)

            per_class: Dict[TaxClass, SystemTaxClassInventory] = {}

            def entry_for(tax_class: TaxClass) -> SystemTaxClassInventory:
                if tax_class not in per_class:
                    per_class[tax_class] = SystemTaxClassInventory(tax_class=tax_class, label=tax_class.label)
                return per_class[tax_class]

            batch_by_id = {b["id"]: b for b in batches}

            for batch in batches:
                liters = bulk_liters[batch["id"]]
                if liters <= ZERO:
                    continue
                gallons = liters_to_gallons(liters)
                entry = entry_for(TaxClass(batch["tax_class"]))
                entry.bulk += gallons
                entry.batches.append(BatchDetail(
                    id=batch["id"],
                    name=batch["name"],
                    batch_number=batch["batch_number"],
                    vessel_id=batch["vessel_id"],
                    vessel_name=batch["vessel_name"],
                    volume_liters=liters,
                    volume_gallons=gallons,
                    type="bulk",
                ))

            for item in packaged.values():
                if item["units"] <= 0:
                    continue
                batch = batch_by_id[item["batch_id"]]
                gallons = ml_to_gallons(item["volume_ml"])
                entry = entry_for(TaxClass(batch["tax_class"]))
                entry.packaged += gallons
                entry.batches.append(BatchDetail(
                    id=item["id"],
                    name=batch["name"],
                    batch_number=batch["batch_number"],
                    volume_liters=(item["volume_ml"] / Decimal("1000")),
                    volume_gallons=gallons,
                    type="packaged",
                    package_info=item["package_info"] or f"{item['units']} x {item['package_size_ml']}mL",
                ))

            by_tax_class = []
            for tax_class in TaxClass:
                entry = per_class.get(tax_class)
                if entry is None:
                    continue
                entry.volume = entry.bulk + entry.packaged
                by_tax_class.append(entry)

            total_bulk = sum((e.bulk for e in by_tax_class), ZERO)
            total_packaged = sum((e.packaged for e in by_tax_class), ZERO)

            inventory = SystemInventory(
                as_of_date=as_of_date,
                bulk=total_bulk,
                packaged=total_packaged,
                total=total_bulk + total_packaged,
                by_tax_class=by_tax_class,
            )

            logger.info(
                "System inventory aggregated",
                extra_fields={
                    "batches": len(batches),
                    "bulk_gallons": str(total_bulk),
                    "packaged_gallons": str(total_packaged),
                },
            )
            return inventory
