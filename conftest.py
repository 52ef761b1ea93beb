"""Shared pytest fixtures: a throwaway SQLite repository and sample data."""

from datetime import date
from decimal import Decimal

import pytest

from core.models.ttb import (
    OpeningBalances,
    ProductType,
    SystemInventory,
    SystemTaxClassInventory,
    TaxClass,
)
from core.observability.metrics import MetricsCollector
from inventory.db import InventoryRepository


AS_OF = date(2024, 1, 1)


@pytest.fixture(autouse=True)
def reset_metrics():
    MetricsCollector.reset()
    yield
    MetricsCollector.reset()


@pytest.fixture
def repository(tmp_path):
    return InventoryRepository(tmp_path / "ttb.db", artifacts_dir=tmp_path / "artifacts")


@pytest.fixture
def opening_balances():
    """150 gal hard cider (100 bulk + 50 bottled) and 20 gal wine under 16%."""
    return OpeningBalances.model_validate({
        "bulk": {"hardCider": "100", "wineUnder16": "20"},
        "bottled": {"hardCider": "50"},
    })


def make_inventory(**volumes) -> SystemInventory:
    """SystemInventory with all volume as bulk, keyed by TaxClass member name."""
    entries = []
    for name, volume in volumes.items():
        tax_class = TaxClass[name]
        entries.append(SystemTaxClassInventory(
            tax_class=tax_class,
            label=tax_class.label,
            volume=Decimal(str(volume)),
            bulk=Decimal(str(volume)),
        ))
    total = sum((e.volume for e in entries), Decimal("0"))
    return SystemInventory(as_of_date=AS_OF, bulk=total, total=total, by_tax_class=entries)


def seed_cider_batch(repository: InventoryRepository, liters: str = "378.541", start: date = date(2023, 6, 1)) -> str:
    """One non-legacy hard cider batch (100 gal by default)."""
    return repository.create_batch(
        batch_number="B-001",
        name="Dry Cider",
        volume_liters=Decimal(liters),
        start_date=start,
        tax_class=TaxClass.HARD_CIDER,
        product_type=ProductType.CIDER,
    )
