"""SQLite persistence for TTB opening balances, batches and reconciliations.

One connection per call, except inside transaction() where every call
shares one connection and commits (or rolls back) together.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterator, List, Optional, Union

from core.models.refs import DataReference
from core.models.ttb import (
    OpeningBalances,
    OpeningBalanceSnapshot,
    ProductType,
    ReconciliationSnapshot,
    SystemInventory,
    TaxClass,
)
from core.observability.logging import get_logger
from core.storage.artifacts import get_json, put_json

logger = get_logger(__name__)


# 1 liter = 0.264172 US gallons
LITERS_PER_GALLON_FACTOR = Decimal("0.264172")
LITER_PRECISION = Decimal("0.0001")

LEGACY_BATCH_PREFIX = "LEGACY-"

REMOVAL_TYPES = ("packaging", "racking_loss", "filter_loss", "bottling_loss")


class PersistenceError(Exception):
    """A database operation failed."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


def legacy_batch_prefix(commit_id: str) -> str:
    """Batch number prefix shared by every legacy batch of one commit attempt."""
    return f"{LEGACY_BATCH_PREFIX}{commit_id[:8].upper()}-"


def gallons_to_liters(gallons: Decimal) -> Decimal:
    return (Decimal(gallons) / LITERS_PER_GALLON_FACTOR).quantize(LITER_PRECISION)


def _iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def init_db(db_path: Path) -> None:
    """Initialize the database with required tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS organization_settings (
                id INTEGER PRIMARY KEY CHECK(id = 1),
                organization_id TEXT NOT NULL,
                opening_balance_date TEXT,
                opening_balances TEXT,
                reconciliation_notes TEXT,
                onboarding_completed_at TEXT,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS vessels (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                capacity_liters TEXT,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS batches (
                id TEXT PRIMARY KEY,
                batch_number TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                product_type TEXT NOT NULL CHECK(product_type IN ('cider', 'perry', 'wine', 'brandy')),
                tax_class TEXT NOT NULL,
                vessel_id TEXT,
                initial_volume_liters TEXT NOT NULL,
                current_volume_liters TEXT NOT NULL,
                start_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active',
                is_legacy INTEGER NOT NULL DEFAULT 0,
                original_gravity TEXT,
                final_gravity TEXT,
                ph TEXT,
                notes TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (vessel_id) REFERENCES vessels(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS volume_removals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                batch_id TEXT NOT NULL,
                removal_type TEXT NOT NULL CHECK(removal_type IN ('packaging', 'racking_loss', 'filter_loss', 'bottling_loss')),
                volume_liters TEXT NOT NULL,
                removed_on TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (batch_id) REFERENCES batches(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS packaged_items (
                id TEXT PRIMARY KEY,
                batch_id TEXT NOT NULL,
                package_size_ml TEXT NOT NULL,
                current_quantity INTEGER NOT NULL DEFAULT 0,
                package_info TEXT,
                packaged_on TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (batch_id) REFERENCES batches(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS distributions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                packaged_item_id TEXT NOT NULL,
                quantity INTEGER NOT NULL,
                distributed_on TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (packaged_item_id) REFERENCES packaged_items(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reconciliation_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                commit_id TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                reconciliation_date TEXT,
                snapshot TEXT NOT NULL,
                artifact_ref TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class InventoryRepository:
    """Persistence collaborator for the onboarding commit and the aggregator.

    Args:
        db_path: SQLite database file (created on first use)
        artifacts_dir: Where reconciliation snapshots are archived as JSON
        organization_id: Organization owning the settings row
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        artifacts_dir: Optional[Union[str, Path]] = None,
        organization_id: str = "default",
    ):
        self.db_path = Path(db_path)
        self.artifacts_dir = Path(artifacts_dir) if artifacts_dir else self.db_path.parent / "artifacts"
        self.organization_id = organization_id
        self._tx_conn: Optional[sqlite3.Connection] = None
        init_db(self.db_path)

    # =========================================================================
    # Connection Handling
    # =========================================================================

    @contextmanager
    def _connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        if self._tx_conn is not None:
            try:
                yield self._tx_conn
            except sqlite3.Error as e:
                raise PersistenceError(operation, e) from e
            return

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(operation, e) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator["InventoryRepository"]:
        """Run every repository call in the block as one transaction.

        Any exception rolls the whole block back and is re-raised.
        """
        if self._tx_conn is not None:
            raise RuntimeError("Nested transactions are not supported")
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        self._tx_conn = conn
        try:
            yield self
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._tx_conn = None
            conn.close()

    @property
    def in_transaction(self) -> bool:
        return self._tx_conn is not None

    # =========================================================================
    # Opening Balances
    # =========================================================================

    def get_opening_balances(self) -> Optional[OpeningBalanceSnapshot]:
        """Current opening balance for the organization, or None if never saved."""
        with self._connection("get_opening_balances") as conn:
            row = conn.execute("""
                SELECT opening_balance_date, opening_balances, reconciliation_notes
                FROM organization_settings WHERE id = 1
            """).fetchone()

        if row is None or row["opening_balances"] is None:
            return None

        return OpeningBalanceSnapshot(
            date=row["opening_balance_date"],
            balances=OpeningBalances.model_validate(json.loads(row["opening_balances"])),
            reconciliation_notes=row["reconciliation_notes"],
        )

    def save_opening_balances(
        self,
        as_of_date: date,
        balances: OpeningBalances,
        reconciliation_notes: Optional[str] = None,
    ) -> None:
        """Upsert the organization's opening balance (last write wins)."""
        now = datetime.utcnow().isoformat()
        balances_json = json.dumps(balances.model_dump(mode="json", by_alias=True))

        with self._connection("save_opening_balances") as conn:
            conn.execute("""
                INSERT INTO organization_settings
                    (id, organization_id, opening_balance_date, opening_balances, reconciliation_notes, updated_at)
                VALUES (1, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    opening_balance_date = excluded.opening_balance_date,
                    opening_balances = excluded.opening_balances,
                    reconciliation_notes = excluded.reconciliation_notes,
                    updated_at = excluded.updated_at
            """, (self.organization_id, _iso(as_of_date), balances_json, reconciliation_notes or None, now))

        logger.info(
            "Opening balances saved",
            extra_fields={"as_of_date": _iso(as_of_date), "wine_total": str(balances.wine_total())},
        )

    # =========================================================================
    # Onboarding Completion
    # =========================================================================

    def mark_onboarding_complete(self, timestamp: Optional[datetime] = None) -> str:
        completed_at = (timestamp or datetime.utcnow()).isoformat()
        with self._connection("mark_onboarding_complete") as conn:
            conn.execute("""
                INSERT INTO organization_settings (id, organization_id, onboarding_completed_at, updated_at)
                VALUES (1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    onboarding_completed_at = excluded.onboarding_completed_at,
                    updated_at = excluded.updated_at
            """, (self.organization_id, completed_at, completed_at))
        return completed_at

    def get_onboarding_completed_at(self) -> Optional[datetime]:
        with self._connection("get_onboarding_completed_at") as conn:
            row = conn.execute(
                "SELECT onboarding_completed_at FROM organization_settings WHERE id = 1"
            ).fetchone()
        if row is None or row["onboarding_completed_at"] is None:
            return None
        return datetime.fromisoformat(row["onboarding_completed_at"])

    # =========================================================================
    # Vessels and Batches
    # =========================================================================

    def create_vessel(self, name: str, capacity_liters: Optional[Decimal] = None, vessel_id: Optional[str] = None) -> str:
        vessel_id = vessel_id or str(uuid.uuid4())
        with self._connection("create_vessel") as conn:
            conn.execute("""
                INSERT INTO vessels (id, name, capacity_liters, created_at) VALUES (?, ?, ?, ?)
            """, (vessel_id, name, _dec(capacity_liters), datetime.utcnow().isoformat()))
        return vessel_id

    def create_batch(
        self,
        batch_number: str,
        name: str,
        volume_liters: Decimal,
        start_date: date,
        tax_class: TaxClass = TaxClass.HARD_CIDER,
        product_type: ProductType = ProductType.CIDER,
        vessel_id: Optional[str] = None,
        is_legacy: bool = False,
        notes: Optional[str] = None,
        original_gravity: Optional[Decimal] = None,
        final_gravity: Optional[Decimal] = None,
        ph: Optional[Decimal] = None,
    ) -> str:
        """Insert a batch and return its id."""
        batch_id = str(uuid.uuid4())
        volume = _dec(Decimal(volume_liters))
        with self._connection("create_batch") as conn:
            conn.execute("""
                INSERT INTO batches (
                    id, batch_number, name, product_type, tax_class, vessel_id,
                    initial_volume_liters, current_volume_liters, start_date, status,
                    is_legacy, original_gravity, final_gravity, ph, notes, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?, ?, ?, ?, ?, ?)
            """, (
                batch_id, batch_number, name, ProductType(product_type).value, TaxClass(tax_class).value,
                vessel_id, volume, volume, _iso(start_date), 1 if is_legacy else 0,
                _dec(original_gravity), _dec(final_gravity), _dec(ph), notes,
                datetime.utcnow().isoformat(),
            ))
        return batch_id

    def find_batch_id(self, batch_number: str) -> Optional[str]:
        with self._connection("find_batch_id") as conn:
            row = conn.execute("SELECT id FROM batches WHERE batch_number = ?", (batch_number,)).fetchone()
        return row["id"] if row else None

    def create_legacy_batch(
        self,
        batch_number: str,
        name: str,
        volume_gallons: Decimal,
        product_type: ProductType,
        tax_class: TaxClass,
        as_of_date: date,
        notes: Optional[str] = None,
        original_gravity: Optional[Decimal] = None,
        final_gravity: Optional[Decimal] = None,
        ph: Optional[Decimal] = None,
        vessel_id: Optional[str] = None,
        start_date: Optional[date] = None,
    ) -> str:
        """Create a legacy batch (stored in liters) and return its id.

        Idempotent on batch_number: an existing batch with the same number
        is returned unchanged.
        """
        existing = self.find_batch_id(batch_number)
        if existing is not None:
            logger.info(
                f"Legacy batch {batch_number} already exists, reusing",
                extra_fields={"batch_id": existing},
            )
            return existing

        return self.create_batch(
            batch_number=batch_number,
            name=name,
            volume_liters=gallons_to_liters(volume_gallons),
            start_date=start_date or as_of_date,
            tax_class=tax_class,
            product_type=product_type,
            vessel_id=vessel_id,
            is_legacy=True,
            notes=notes or None,
            original_gravity=original_gravity,
            final_gravity=final_gravity,
            ph=ph,
        )

    def list_batches(
        self,
        include_legacy: bool = True,
        started_on_or_before: Optional[date] = None,
    ) -> List[dict]:
        """Batches joined with their vessel name, ordered by start date."""
        query = """
            SELECT b.*, v.name AS vessel_name
            FROM batches b LEFT JOIN vessels v ON v.id = b.vessel_id
            WHERE 1 = 1
        """
        params: list = []
        if not include_legacy:
            query += " AND b.is_legacy = 0"
        if started_on_or_before is not None:
            query += " AND b.start_date <= ?"
            params.append(_iso(started_on_or_before))
        query += " ORDER BY b.start_date, b.batch_number"

        with self._connection("list_batches") as conn:
            return [dict(r) for r in conn.execute(query, params).fetchall()]

    def discard_legacy_batches(self, commit_id: str) -> int:
        """Delete the legacy batches an abandoned commit attempt created.

        Only legacy batches carrying the attempt's batch number prefix are
        touched. Returns the number of batches removed.
        """
        prefix = legacy_batch_prefix(commit_id)
        with self._connection("discard_legacy_batches") as conn:
            cursor = conn.execute(
                "DELETE FROM batches WHERE is_legacy = 1 AND substr(batch_number, 1, ?) = ?",
                (len(prefix), prefix),
            )
            removed = cursor.rowcount

        if removed:
            logger.info(
                f"Discarded {removed} legacy batches from superseded commit {commit_id}",
                extra_fields={"batch_prefix": prefix},
            )
        return removed

    def list_legacy_batches(self) -> List[dict]:
        with self._connection("list_legacy_batches") as conn:
            rows = conn.execute("""
                SELECT id, batch_number, name, product_type, tax_class, vessel_id,
                       initial_volume_liters, start_date, notes, created_at
                FROM batches WHERE is_legacy = 1 ORDER BY batch_number
            """).fetchall()
        return [dict(r) for r in rows]

    # =========================================================================
    # Volume Movements
    # =========================================================================

    def record_volume_removal(self, batch_id: str, removal_type: str, volume_liters: Decimal, removed_on: date) -> None:
        """Record a packaging draw or a racking/filter/bottling loss."""
        if removal_type not in REMOVAL_TYPES:
            raise ValueError(f"Invalid removal_type: {removal_type}. Must be one of {', '.join(REMOVAL_TYPES)}")
        with self._connection("record_volume_removal") as conn:
            conn.execute("""
                INSERT INTO volume_removals (batch_id, removal_type, volume_liters, removed_on, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (batch_id, removal_type, _dec(Decimal(volume_liters)), _iso(removed_on), datetime.utcnow().isoformat()))

    def list_volume_removals(self, on_or_before: Optional[date] = None) -> List[dict]:
        query = "SELECT batch_id, removal_type, volume_liters, removed_on FROM volume_removals"
        params: list = []
        if on_or_before is not None:
            query += " WHERE removed_on <= ?"
            params.append(_iso(on_or_before))
        with self._connection("list_volume_removals") as conn:
            return [dict(r) for r in conn.execute(query, params).fetchall()]

    def record_packaged_item(
        self,
        batch_id: str,
        package_size_ml: Decimal,
        quantity: int,
        packaged_on: date,
        package_info: Optional[str] = None,
    ) -> str:
        item_id = str(uuid.uuid4())
        with self._connection("record_packaged_item") as conn:
            conn.execute("""
                INSERT INTO packaged_items (id, batch_id, package_size_ml, current_quantity, package_info, packaged_on, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (item_id, batch_id, _dec(Decimal(package_size_ml)), quantity, package_info, _iso(packaged_on),
                  datetime.utcnow().isoformat()))
        return item_id

    def record_distribution(self, packaged_item_id: str, quantity: int, distributed_on: date) -> None:
        """Record units leaving inventory; current quantity drops accordingly."""
        with self._connection("record_distribution") as conn:
            conn.execute("""
                INSERT INTO distributions (packaged_item_id, quantity, distributed_on, created_at)
                VALUES (?, ?, ?, ?)
            """, (packaged_item_id, quantity, _iso(distributed_on), datetime.utcnow().isoformat()))
            conn.execute("""
                UPDATE packaged_items SET current_quantity = MAX(0, current_quantity - ?) WHERE id = ?
            """, (quantity, packaged_item_id))

    def list_packaged_items(self, packaged_on_or_before: Optional[date] = None) -> List[dict]:
        query = "SELECT id, batch_id, package_size_ml, current_quantity, package_info, packaged_on FROM packaged_items"
        params: list = []
        if packaged_on_or_before is not None:
            query += " WHERE packaged_on <= ?"
            params.append(_iso(packaged_on_or_before))
        with self._connection("list_packaged_items") as conn:
            return [dict(r) for r in conn.execute(query, params).fetchall()]

    def list_distributions(self, after: Optional[date] = None) -> List[dict]:
        query = "SELECT packaged_item_id, quantity, distributed_on FROM distributions"
        params: list = []
        if after is not None:
            query += " WHERE distributed_on > ?"
            params.append(_iso(after))
        with self._connection("list_distributions") as conn:
            return [dict(r) for r in conn.execute(query, params).fetchall()]

    # =========================================================================
    # System Inventory
    # =========================================================================

    def get_system_inventory_as_of(self, as_of_date: date) -> SystemInventory:
        """Historical system inventory; see inventory.aggregator."""
        from inventory.aggregator import InventoryAggregator

        return InventoryAggregator(self).get_system_inventory_as_of(as_of_date)

    # =========================================================================
    # Reconciliation Snapshots (append-only)
    # =========================================================================

    def save_reconciliation_snapshot(self, snapshot: ReconciliationSnapshot, commit_id: str) -> int:
        """Append a snapshot and archive its JSON; returns the snapshot id.

        A second save for the same commit_id returns the existing id
        without writing anything.
        """
        with self._connection("save_reconciliation_snapshot") as conn:
            row = conn.execute(
                "SELECT id FROM reconciliation_snapshots WHERE commit_id = ?", (commit_id,)
            ).fetchone()
            if row is not None:
                logger.info(
                    f"Reconciliation snapshot for commit {commit_id} already saved",
                    extra_fields={"snapshot_id": row["id"]},
                )
                return row["id"]

            artifact_ref = put_json(snapshot, self.artifacts_dir / "reconciliations" / f"{commit_id}.json")

            cursor = conn.execute("""
                INSERT INTO reconciliation_snapshots
                    (commit_id, name, reconciliation_date, snapshot, artifact_ref, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                commit_id,
                snapshot.name,
                _iso(snapshot.reconciliation_date),
                json.dumps(snapshot.model_dump(mode="json", by_alias=True, exclude={"id", "created_at"})),
                artifact_ref.model_dump_json(),
                datetime.utcnow().isoformat(),
            ))
            snapshot_id = cursor.lastrowid

        logger.info(
            "Reconciliation snapshot saved",
            extra_fields={"snapshot_id": snapshot_id, "content_hash": artifact_ref.content_hash},
        )
        return snapshot_id

    def _row_to_snapshot(self, row: sqlite3.Row) -> ReconciliationSnapshot:
        data = json.loads(row["snapshot"])
        data["id"] = row["id"]
        data["createdAt"] = row["created_at"]
        return ReconciliationSnapshot.model_validate(data)

    def list_reconciliation_snapshots(self) -> List[ReconciliationSnapshot]:
        with self._connection("list_reconciliation_snapshots") as conn:
            rows = conn.execute(
                "SELECT id, snapshot, created_at FROM reconciliation_snapshots ORDER BY id"
            ).fetchall()
        return [self._row_to_snapshot(r) for r in rows]

    def get_reconciliation_snapshot(self, snapshot_id: int) -> Optional[ReconciliationSnapshot]:
        with self._connection("get_reconciliation_snapshot") as conn:
            row = conn.execute(
                "SELECT id, snapshot, created_at FROM reconciliation_snapshots WHERE id = ?", (snapshot_id,)
            ).fetchone()
        return self._row_to_snapshot(row) if row else None

    def get_snapshot_artifact(self, snapshot_id: int) -> Optional[DataReference]:
        with self._connection("get_snapshot_artifact") as conn:
            row = conn.execute(
                "SELECT artifact_ref FROM reconciliation_snapshots WHERE id = ?", (snapshot_id,)
            ).fetchone()
        if row is None or row["artifact_ref"] is None:
            return None
        return DataReference.model_validate_json(row["artifact_ref"])

    def verify_snapshot_archive(self, snapshot_id: int) -> dict:
        """Load the archived JSON for a snapshot, checking its content hash.

        Raises:
            LookupError: If the snapshot has no archive
            ValueError: If the archived file was modified
        """
        ref = self.get_snapshot_artifact(snapshot_id)
        if ref is None:
            raise LookupError(f"No archived artifact for reconciliation snapshot {snapshot_id}")
        return get_json(ref, validate_hash=True)
