"""TTB onboarding wizard.

Four steps:
1. Enter regulator opening balances and their date
2. Calculate the reconciliation against system inventory
3. Explain any gap with legacy batches
4. Review, confirm and commit

State lives in one OnboardingState object, persisted as a draft after
every mutation so the wizard can be resumed later.
"""

import hashlib
import json
import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional, Protocol, Set, Union

from pydantic import ValidationError

from core.audit.events import AuditEventType, AuditLogger
from core.models.ttb import (
    ONBOARDING_SCHEMA_VERSION,
    LegacyBatchInput,
    OnboardingState,
    OpeningBalances,
    OpeningBalanceSnapshot,
    ReconciliationSnapshot,
    ReconciliationSummary,
    SnapshotBreakdown,
    SnapshotTaxClassRow,
    SnapshotTotals,
    Step1Data,
    Step2Data,
    SystemInventory,
    TaxClass,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import (
    record_commit_completed,
    record_commit_failed,
    record_commit_started,
    record_reconciliation_run,
)
from core.storage.drafts import ONBOARDING_DRAFT_KEY, DraftStore
from core.workflow.base import FIRST_STEP, LAST_STEP, CommitResult, OnboardingStep
from reconciliation import gaps
from reconciliation.engine import ZERO, reconcile, reconcile_spirits
from workflows.commit import CommitExecutor, CommitPlan

logger = get_logger(__name__)

SNAPSHOT_NAME = "Initial Reconciliation"

_UNSET = object()


class InventoryReader(Protocol):
    """Read side of the persistence collaborator used by the wizard."""

    def get_opening_balances(self) -> Optional[OpeningBalanceSnapshot]:
        ...

    def get_system_inventory_as_of(self, as_of_date: date) -> SystemInventory:
        ...


def _fingerprint(as_of_date: date, balances: OpeningBalances, inventory: SystemInventory) -> str:
    payload = {
        "date": as_of_date.isoformat(),
        "balances": balances.model_dump(mode="json", by_alias=True),
        "inventory": inventory.model_dump(mode="json", by_alias=True),
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


class OnboardingWizard:
    """State machine behind the onboarding wizard.

    Args:
        draft_store: Where the in-progress state is kept
        inventory_reader: Opening balances and historical system inventory
        commit_executor: Runs the commit protocol
        audit_logger: Optional audit sink
        draft_key: Draft store key
    """

    def __init__(
        self,
        draft_store: DraftStore,
        inventory_reader: InventoryReader,
        commit_executor: CommitExecutor,
        audit_logger: Optional[AuditLogger] = None,
        draft_key: str = ONBOARDING_DRAFT_KEY,
    ):
        self.draft_store = draft_store
        self.inventory_reader = inventory_reader
        self.commit_executor = commit_executor
        self.audit_logger = audit_logger
        self.draft_key = draft_key
        self.state = self._load()

    # =========================================================================
    # Draft Persistence
    # =========================================================================

    def _load(self) -> OnboardingState:
        try:
            raw = self.draft_store.load(self.draft_key)
        except ValueError as e:
            logger.debug(f"Discarding unreadable onboarding draft: {e}")
            return OnboardingState()

        if raw is None:
            return OnboardingState()

        version = raw.get("schemaVersion")
        if version != ONBOARDING_SCHEMA_VERSION:
            logger.info(
                "Discarding onboarding draft with a different schema version",
                extra_fields={"draft_version": version, "expected_version": ONBOARDING_SCHEMA_VERSION},
            )
            return OnboardingState()

        try:
            return OnboardingState.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"Discarding invalid onboarding draft: {e.error_count()} errors")
            return OnboardingState()

    def _save(self) -> None:
        self.draft_store.save(self.draft_key, self.state.model_dump(mode="json", by_alias=True))

    def _audit(self, event_type: AuditEventType, message: str, **details) -> None:
        if self.audit_logger is None:
            return
        self.audit_logger.log_info(
            event_type,
            message,
            commit_id=self.state.step4.commit_id,
            step=self.state.current_step,
            details=details,
        )

    def has_draft(self) -> bool:
        """A resumable draft exists (one with a date or past step 1)."""
        if not self.draft_store.exists(self.draft_key):
            return False
        return self.state.step1.date is not None or self.state.current_step > FIRST_STEP

    def reset(self) -> None:
        """Drop the draft and start over at step 1."""
        self.draft_store.clear(self.draft_key)
        self.state = OnboardingState()
        self._audit(AuditEventType.DRAFT_RESET, "Onboarding draft reset")
        logger.info("Onboarding draft reset")

    # =========================================================================
    # Step 1: Opening Balances
    # =========================================================================

    def _invalidate_calculation(self) -> None:
        self.state.step2 = Step2Data()
        # A confirmation covers the figures it was given for
        self.state.step4.confirmed = False
        self._supersede_commit_attempt()

    def _supersede_commit_attempt(self) -> None:
        """Retire the pending commit id once the figures it was planned for change.

        The next commit gets a fresh id and discards the legacy batches the
        retired attempt may have written.
        """
        step4 = self.state.step4
        if step4.commit_id is None:
            return
        logger.info(f"Draft changed after commit attempt {step4.commit_id}, next commit starts over")
        step4.superseded_commit_ids.append(step4.commit_id)
        step4.commit_id = None

    def update_step1(
        self,
        as_of_date=_UNSET,
        balances: Optional[Union[OpeningBalances, dict]] = None,
        reconciliation_notes: Optional[str] = None,
    ) -> Step1Data:
        """Merge step 1 changes; a new date or new balances drop step 2."""
        step1 = self.state.step1
        was_started = step1.date is not None

        new_date = step1.date
        if as_of_date is not _UNSET:
            new_date = Step1Data(date=as_of_date).date

        new_balances = step1.balances
        if balances is not None:
            if isinstance(balances, OpeningBalances):
                new_balances = balances
            else:
                merged = step1.balances.model_dump(by_alias=True)
                for section, values in balances.items():
                    if isinstance(values, dict) and isinstance(merged.get(section), dict):
                        merged[section].update(values)
                    else:
                        merged[section] = values
                new_balances = OpeningBalances.model_validate(merged)

        if new_date != step1.date or new_balances != step1.balances:
            self._invalidate_calculation()

        step1.date = new_date
        step1.balances = new_balances
        if reconciliation_notes is not None:
            step1.reconciliation_notes = reconciliation_notes

        self._save()

        if not was_started and step1.date is not None:
            self._audit(
                AuditEventType.ONBOARDING_STARTED,
                f"Onboarding started with opening balance date {step1.date.isoformat()}",
            )
        return step1

    def prefill_from_existing(self) -> bool:
        """Copy a previously saved opening balance into an undated draft."""
        if self.state.step1.date is not None:
            return False

        existing = self.inventory_reader.get_opening_balances()
        if existing is None or existing.date is None:
            return False

        self.state.step1 = Step1Data(
            date=existing.date,
            balances=existing.balances,
            reconciliation_notes=existing.reconciliation_notes or "",
        )
        self._invalidate_calculation()
        self._save()
        logger.info("Prefilled opening balances from saved settings", extra_fields={"as_of_date": existing.date.isoformat()})
        return True

    def can_advance_from_step1(self) -> bool:
        step1 = self.state.step1
        if step1.date is None:
            return False
        return step1.balances.wine_total() > ZERO or step1.balances.spirits_total() > ZERO

    # =========================================================================
    # Navigation
    # =========================================================================

    def completed_steps(self) -> Set[int]:
        completed = set()
        if self.state.step1.date is not None:
            completed.add(int(OnboardingStep.OPENING_BALANCES))
        if self.state.step2.calculated:
            completed.add(int(OnboardingStep.RECONCILIATION))
        if self.state.step4.confirmed:
            completed.add(int(OnboardingStep.REVIEW))
        return completed

    def _move_to(self, step: int) -> None:
        previous = self.state.current_step
        self.state.current_step = step
        self._save()
        self._audit(AuditEventType.STEP_CHANGED, f"Moved from step {previous} to step {step}", previous_step=previous)

    def go_next(self) -> bool:
        current = self.state.current_step
        if current >= LAST_STEP:
            return False
        if current == OnboardingStep.OPENING_BALANCES and not self.can_advance_from_step1():
            return False
        if current == OnboardingStep.RECONCILIATION and not self.state.step2.calculated:
            return False
        self._move_to(current + 1)
        return True

    def go_back(self) -> bool:
        current = self.state.current_step
        if current <= FIRST_STEP:
            return False
        self._move_to(current - 1)
        return True

    def go_to_step(self, step: int) -> bool:
        if step < FIRST_STEP or step > LAST_STEP:
            return False
        if step > self.state.current_step and step not in self.completed_steps():
            return False
        if step != self.state.current_step:
            self._move_to(step)
        return True

    # =========================================================================
    # Step 2: Reconciliation
    # =========================================================================

    def calculate(self) -> Optional[Step2Data]:
        """Reconcile step 1 balances against system inventory for the date.

        Returns None (without touching inventory) when no date is set.
        """
        step1 = self.state.step1
        if step1.date is None:
            return None

        with with_correlation(as_of_date=step1.date.isoformat(), step=self.state.current_step):
            inventory = self.inventory_reader.get_system_inventory_as_of(step1.date)
            fingerprint = _fingerprint(step1.date, step1.balances, inventory)

            step2 = self.state.step2
            if step2.calculated and step2.input_fingerprint == fingerprint:
                logger.debug("Reconciliation inputs unchanged, keeping previous calculation")
                return step2

            result = reconcile(step1.balances, inventory)
            self.state.step2 = Step2Data(
                calculated=True,
                ttb_total=result.totals.ttb_total,
                system_total=result.totals.system_total,
                difference=result.totals.difference,
                by_tax_class=result.by_tax_class,
                system_inventory=inventory,
                input_fingerprint=fingerprint,
            )
            self._supersede_commit_attempt()
            self._save()

            record_reconciliation_run(result.totals.is_fully_reconciled)
            self._audit(
                AuditEventType.RECONCILIATION_CALCULATED,
                f"Reconciliation calculated: difference {result.totals.difference} gal",
                ttb_total=str(result.totals.ttb_total),
                system_total=str(result.totals.system_total),
                difference=str(result.totals.difference),
                is_fully_reconciled=result.totals.is_fully_reconciled,
            )
            logger.info(
                "Reconciliation calculated",
                extra_fields={
                    "ttb_total": str(result.totals.ttb_total),
                    "system_total": str(result.totals.system_total),
                    "difference": str(result.totals.difference),
                },
            )
            return self.state.step2

    # =========================================================================
    # Step 3: Gap Resolution
    # =========================================================================

    def add_legacy_batch(self, batch: Union[LegacyBatchInput, dict]) -> List[str]:
        """Add a legacy batch; returns validation errors (empty when added)."""
        if not isinstance(batch, LegacyBatchInput):
            batch = LegacyBatchInput.model_validate(batch)

        errors = gaps.validate_legacy_batch(batch)
        if errors:
            return errors

        step3 = self.state.step3
        step3.legacy_batches = gaps.add_legacy_batch(step3.legacy_batches, batch)
        self._supersede_commit_attempt()
        self._save()
        self._audit(
            AuditEventType.LEGACY_BATCH_ADDED,
            f"Legacy batch '{batch.name}' added ({batch.volume_gallons} gal)",
            tax_class=batch.tax_class.value,
            volume_gallons=str(batch.volume_gallons),
        )
        return []

    def remove_legacy_batch(self, index: int) -> LegacyBatchInput:
        """Remove the legacy batch at index.

        Raises:
            IndexError: If index is out of range
        """
        step3 = self.state.step3
        removed = step3.legacy_batches[index] if 0 <= index < len(step3.legacy_batches) else None
        step3.legacy_batches = gaps.remove_legacy_batch(step3.legacy_batches, index)
        self._supersede_commit_attempt()
        self._save()
        self._audit(AuditEventType.LEGACY_BATCH_REMOVED, f"Legacy batch '{removed.name}' removed", index=index)
        return removed

    def update_step3(self, discrepancy_notes: Optional[str] = None) -> None:
        if discrepancy_notes is not None:
            if discrepancy_notes != self.state.step3.discrepancy_notes:
                self._supersede_commit_attempt()
            self.state.step3.discrepancy_notes = discrepancy_notes
            self._save()

    def remaining_gap(self) -> Decimal:
        return gaps.remaining_gap(self.state.step2.difference, self.state.step3.legacy_batches)

    def is_gap_resolved(self) -> bool:
        return gaps.is_resolved(self.remaining_gap())

    def gap_status(self) -> gaps.GapStatus:
        return gaps.gap_status(self.state.step2.difference, self.state.step3.legacy_batches)

    def gap_tax_classes(self) -> List[TaxClass]:
        """Tax classes whose regulator balance exceeds system inventory."""
        return [row.tax_class for row in gaps.tax_classes_with_gaps(self.state.step2.by_tax_class)]

    def suggested_batch_name(self, tax_class) -> str:
        return gaps.suggest_legacy_batch_name(tax_class, self.state.step1.date)

    # =========================================================================
    # Step 4: Review and Commit
    # =========================================================================

    def set_confirmed(self, confirmed: bool) -> None:
        self.state.step4.confirmed = bool(confirmed)
        self._save()

    def build_reconciliation_snapshot(self) -> ReconciliationSnapshot:
        """The record the commit saves, built from the current state."""
        step1, step2, step3 = self.state.step1, self.state.step2, self.state.step3
        batches = step3.legacy_batches
        legacy_by_class = gaps.legacy_volume_by_tax_class(batches)

        rows = [
            SnapshotTaxClassRow(
                key=row.tax_class,
                label=row.label,
                type="wine",
                ttb_total=row.ttb_balance,
                current_inventory=row.system_inventory,
                legacy_batches=legacy_by_class.get(row.tax_class, ZERO),
                difference=row.difference,
                is_reconciled=row.is_reconciled,
            )
            for row in step2.by_tax_class
        ]
        for row in reconcile_spirits(step1.balances.spirits, legacy_by_class):
            rows.append(SnapshotTaxClassRow(
                key=row.tax_class,
                label=row.label,
                type="spirits",
                ttb_total=row.ttb_balance,
                current_inventory=ZERO,
                legacy_batches=row.system_inventory,
                difference=row.difference,
                is_reconciled=row.is_reconciled,
            ))

        inventory = step2.system_inventory or SystemInventory()
        notes = step3.discrepancy_notes.strip() or None

        return ReconciliationSnapshot(
            name=SNAPSHOT_NAME,
            reconciliation_date=step1.date,
            notes=notes,
            discrepancy_explanation=notes,
            summary=ReconciliationSummary(
                opening_balance_date=step1.date,
                totals=SnapshotTotals(
                    ttb_balance=step2.ttb_total,
                    current_inventory=step2.system_total,
                    legacy_batches=gaps.total_legacy_volume(batches),
                    difference=self.remaining_gap(),
                ),
                breakdown=SnapshotBreakdown(
                    bulk_inventory=inventory.bulk,
                    packaged_inventory=inventory.packaged,
                ),
                tax_classes=rows,
            ),
        )

    def build_commit_plan(self) -> CommitPlan:
        step1 = self.state.step1
        return CommitPlan(
            commit_id=self.state.step4.commit_id,
            as_of_date=step1.date,
            balances=step1.balances,
            snapshot=self.build_reconciliation_snapshot(),
            reconciliation_notes=step1.reconciliation_notes or None,
            legacy_batches=list(self.state.step3.legacy_batches),
            superseded_commit_ids=list(self.state.step4.superseded_commit_ids),
        )

    def commit(self) -> CommitResult:
        """Run the commit protocol for a confirmed draft on step 4.

        Refused commits perform no side effects. On success the draft is
        cleared; on failure the wizard stays on step 4 with the error.
        """
        if self.state.current_step != LAST_STEP:
            return CommitResult.rejected("Commit is only available on the review step")
        if not self.state.step4.confirmed:
            return CommitResult.rejected("Confirm the reconciliation before committing")
        if self.state.step1.date is None or not self.state.step2.calculated:
            return CommitResult.rejected("Reconciliation has not been calculated")

        if self.state.step4.commit_id is None:
            # Kept with the draft so a retry reuses the same batch numbers
            self.state.step4.commit_id = uuid.uuid4().hex
            self._save()

        commit_id = self.state.step4.commit_id
        plan = self.build_commit_plan()

        with with_correlation(commit_id=commit_id, step=self.state.current_step):
            record_commit_started(commit_id)
            self._audit(
                AuditEventType.COMMIT_STARTED,
                "Onboarding commit started",
                legacy_batches=len(plan.legacy_batches),
                remaining_gap=str(plan.snapshot.summary.totals.difference),
            )

            result = self.commit_executor.execute(plan)

            if not result.success:
                stage = result.failed_stage.value if result.failed_stage else "unknown"
                logger.error(
                    f"Onboarding commit failed at {stage}: {result.error_message}",
                    extra_fields={"completed_stages": [s.value for s in result.completed_stages]},
                )
                record_commit_failed(commit_id, stage)
                if self.audit_logger is not None:
                    self.audit_logger.log_error(
                        AuditEventType.COMMIT_FAILED,
                        f"Onboarding commit failed at {stage}: {result.error_message}",
                        commit_id=commit_id,
                        workflow_id=result.workflow_id,
                        step=self.state.current_step,
                        details=result.to_dict(),
                    )
                return result

            duration_ms = None
            if result.completed_at is not None:
                duration_ms = (result.completed_at - result.started_at).total_seconds() * 1000
            record_commit_completed(commit_id, duration_ms)
            self._audit(
                AuditEventType.ONBOARDING_COMPLETED,
                "Onboarding committed",
                snapshot_id=result.snapshot_id,
                legacy_batch_ids=result.legacy_batch_ids,
            )
            logger.info("Onboarding committed", extra_fields={"snapshot_id": result.snapshot_id})

        self.draft_store.clear(self.draft_key)
        self.state = OnboardingState()
        return result
