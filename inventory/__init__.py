"""Inventory - SQLite persistence, historical aggregation and read cache."""

from inventory.db import (
    InventoryRepository,
    PersistenceError,
    LEGACY_BATCH_PREFIX,
    legacy_batch_prefix,
    gallons_to_liters,
    init_db,
)
from inventory.aggregator import (
    InventoryAggregator,
    liters_to_gallons,
    ml_to_gallons,
)
from inventory.cache import InventoryReadCache

__all__ = [
    "InventoryRepository",
    "PersistenceError",
    "LEGACY_BATCH_PREFIX",
    "legacy_batch_prefix",
    "gallons_to_liters",
    "init_db",
    "InventoryAggregator",
    "liters_to_gallons",
    "ml_to_gallons",
    "InventoryReadCache",
]
