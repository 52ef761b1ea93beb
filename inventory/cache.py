"""Read cache over the inventory repository.

Memoizes the two reads the onboarding wizard repeats while a user moves
between steps. A successful commit clears it.
"""

from datetime import date
from threading import Lock
from typing import Dict, Optional

from core.models.ttb import OpeningBalanceSnapshot, SystemInventory
from core.observability.logging import get_logger
from inventory.db import InventoryRepository

logger = get_logger(__name__)

_UNSET = object()


class InventoryReadCache:
    """Caches get_opening_balances() and get_system_inventory_as_of(date)."""

    def __init__(self, repository: InventoryRepository):
        self.repository = repository
        self._opening_balances = _UNSET
        self._inventory_by_date: Dict[date, SystemInventory] = {}
        self._lock = Lock()

    def get_opening_balances(self) -> Optional[OpeningBalanceSnapshot]:
        with self._lock:
            if self._opening_balances is not _UNSET:
                return self._opening_balances
        value = self.repository.get_opening_balances()
        with self._lock:
            self._opening_balances = value
        return value

    def get_system_inventory_as_of(self, as_of_date: date) -> SystemInventory:
        with self._lock:
            cached = self._inventory_by_date.get(as_of_date)
        if cached is not None:
            return cached
        inventory = self.repository.get_system_inventory_as_of(as_of_date)
        with self._lock:
            self._inventory_by_date[as_of_date] = inventory
        return inventory

    def invalidate(self) -> None:
        with self._lock:
            self._opening_balances = _UNSET
            self._inventory_by_date.clear()
        logger.info("Inventory read cache invalidated")
