"""
Reconcile the saved TTB opening balances against system inventory.

Prints one row per wine tax class (TTB balance, system inventory,
difference) plus the spirits rows, then the totals. Exit code is 0 when
every class is within tolerance and 1 otherwise.

Usage:
    python scripts/reconcile.py --as-of 2024-01-01
    python scripts/reconcile.py --as-of 2024-01-01 --json
    python scripts/reconcile.py --snapshot 3 --verify
"""

import argparse
import json
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Dict

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.models.ttb import OpeningBalanceSnapshot, TaxClass
from core.observability.logging import configure_logging
from inventory.aggregator import liters_to_gallons
from inventory.db import InventoryRepository
from reconciliation.engine import reconcile, reconcile_spirits


def _legacy_by_class(repository: InventoryRepository) -> Dict[TaxClass, Decimal]:
    totals: Dict[TaxClass, Decimal] = {}
    for batch in repository.list_legacy_batches():
        tax_class = TaxClass(batch["tax_class"])
        totals[tax_class] = totals.get(tax_class, Decimal("0")) + liters_to_gallons(
            Decimal(batch["initial_volume_liters"])
        )
    return totals


def run_reconciliation(repository: InventoryRepository, as_of: date, as_json: bool = False) -> bool:
    """Print the reconciliation for a date; True when fully reconciled."""
    snapshot = repository.get_opening_balances() or OpeningBalanceSnapshot()
    inventory = repository.get_system_inventory_as_of(as_of)
    result = reconcile(snapshot.balances, inventory)
    spirits = reconcile_spirits(snapshot.balances.spirits, _legacy_by_class(repository))

    if as_json:
        print(json.dumps(
            {
                "asOfDate": as_of.isoformat(),
                "openingBalanceDate": snapshot.date.isoformat() if snapshot.date else None,
                "reconciliation": result.model_dump(mode="json", by_alias=True),
                "spirits": [row.model_dump(mode="json", by_alias=True) for row in spirits],
            },
            indent=2,
        ))
        return result.totals.is_fully_reconciled

    print("\n" + "=" * 70)
    print(f"TTB RECONCILIATION AS OF {as_of.isoformat()}")
    if snapshot.date is None:
        print("(no opening balances saved; TTB side is zero)")
    else:
        print(f"Opening balance date: {snapshot.date.isoformat()}")
    print("=" * 70)

    print(f"\n{'Tax class':<26}{'TTB':>12}{'System':>12}{'Diff':>12}")
    print("-" * 70)
    for row in result.by_tax_class:
        mark = "✓" if row.is_reconciled else "✗"
        print(f"{mark} {row.label:<24}{row.ttb_balance:>12}{row.system_inventory:>12}{row.difference:>12}")

    if spirits:
        print("\nSpirits (proof gallons, vs legacy batches)")
        print("-" * 70)
        for row in spirits:
            mark = "✓" if row.is_reconciled else "✗"
            print(f"{mark} {row.label:<24}{row.ttb_balance:>12}{row.system_inventory:>12}{row.difference:>12}")

    print("-" * 70)
    totals = result.totals
    print(f"  {'Total (wine)':<24}{totals.ttb_total:>12}{totals.system_total:>12}{totals.difference:>12}")
    print("\n" + ("✓ FULLY RECONCILED" if result.totals.is_fully_reconciled else "✗ DISCREPANCIES FOUND"))
    print("=" * 70 + "\n")
    return result.totals.is_fully_reconciled


def verify_snapshot(repository: InventoryRepository, snapshot_id: int) -> bool:
    """Check a committed snapshot against its archived artifact."""
    try:
        info = repository.verify_snapshot_archive(snapshot_id)
    except (LookupError, ValueError) as e:
        print(f"✗ Snapshot {snapshot_id}: {e}", file=sys.stderr)
        return False
    print(f"✓ Snapshot {snapshot_id} matches its archive")
    print(f"  name: {info.get('name')}")
    print(f"  reconciliationDate: {info.get('reconciliationDate')}")
    return True


def main():
    parser = argparse.ArgumentParser(description="Reconcile TTB opening balances against system inventory")
    parser.add_argument("--as-of", type=date.fromisoformat, help="Inventory date (YYYY-MM-DD)")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    parser.add_argument("--snapshot", type=int, help="Committed reconciliation snapshot id")
    parser.add_argument("--verify", action="store_true", help="Verify --snapshot against its archived artifact")
    parser.add_argument("--db", type=str, default=None, help="SQLite path (default: TTB_DB_PATH)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)
    repository = InventoryRepository(
        args.db or settings.db_path,
        artifacts_dir=settings.artifacts_dir,
        organization_id=settings.organization_id,
    )

    if args.snapshot is not None:
        if args.verify:
            return 0 if verify_snapshot(repository, args.snapshot) else 1
        snapshot = repository.get_reconciliation_snapshot(args.snapshot)
        if snapshot is None:
            print(f"Reconciliation {args.snapshot} not found", file=sys.stderr)
            return 1
        print(json.dumps(snapshot.model_dump(mode="json", by_alias=True), indent=2))
        return 0

    if args.as_of is None:
        parser.error("--as-of is required unless --snapshot is given")

    return 0 if run_reconciliation(repository, args.as_of, as_json=args.json) else 1


if __name__ == "__main__":
    sys.exit(main())
