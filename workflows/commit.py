"""Onboarding commit protocol.

Stages run in a fixed order (see CommitStage). The default local mode is
not transactional: a failure stops the sequence and leaves the effects
of earlier stages in place. Atomic mode runs the four persistent stages
in one database transaction instead.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, List, Optional

from temporalio.client import WorkflowFailureError
from temporalio.common import WorkflowIDReusePolicy
from temporalio.exceptions import WorkflowAlreadyStartedError

from core.audit.events import AuditEventType, AuditLogger
from core.models.ttb import LegacyBatchInput, OpeningBalances, ReconciliationSnapshot
from core.observability.logging import (
    get_logger,
    log_stage_complete,
    log_stage_error,
    log_stage_start,
    with_correlation,
)
from core.observability.metrics import record_stage_time
from core.workflow.base import CommitResult, CommitStage
from inventory.cache import InventoryReadCache
from inventory.db import InventoryRepository, legacy_batch_prefix
from workflows.onboarding_commit_workflow import OnboardingCommitInput, TTBOnboardingCommitWorkflow

logger = get_logger(__name__)


def legacy_batch_number(commit_id: str, index: int) -> str:
    """Deterministic batch number for the index-th legacy batch of a commit."""
    return f"{legacy_batch_prefix(commit_id)}{index + 1:03d}"


@dataclass
class CommitPlan:
    """Everything the commit writes, fixed before the first stage runs."""
    commit_id: str
    as_of_date: date
    balances: OpeningBalances
    snapshot: ReconciliationSnapshot
    reconciliation_notes: Optional[str] = None
    legacy_batches: List[LegacyBatchInput] = field(default_factory=list)
    completed_at: datetime = field(default_factory=datetime.utcnow)
    # Earlier attempts abandoned after the draft changed; their batches are discarded
    superseded_commit_ids: List[str] = field(default_factory=list)

    def batch_numbers(self) -> List[str]:
        return [legacy_batch_number(self.commit_id, i) for i in range(len(self.legacy_batches))]


class CommitStageError(Exception):
    """A commit stage raised; wraps the original exception."""

    def __init__(self, stage: CommitStage, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(str(cause))


class CommitExecutor(ABC):
    """Runs a CommitPlan and reports what happened."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self.audit_logger = audit_logger

    @abstractmethod
    def execute(self, plan: CommitPlan) -> CommitResult:
        pass

    def _audit(self, event_type: AuditEventType, message: str, plan: CommitPlan, **details: Any) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log_info(event_type, message, commit_id=plan.commit_id, details=details)


# =============================================================================
# Local (in-process) Execution
# =============================================================================

class LocalCommitExecutor(CommitExecutor):
    """Runs the commit stages in-process against the repository.

    Args:
        repository: Persistence collaborator
        cache: Read cache cleared by the last stage
        atomic: Run stages 1-4 in one transaction (rolled back on failure)
        audit_logger: Optional audit sink for per-stage events
    """

    def __init__(
        self,
        repository: InventoryRepository,
        cache: Optional[InventoryReadCache] = None,
        atomic: bool = False,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(audit_logger)
        self.repository = repository
        self.cache = cache
        self.atomic = atomic

    def _run_stage(self, stage: CommitStage, result: CommitResult, fn: Callable[[], Any]) -> Any:
        log_stage_start(stage.value)
        started = time.perf_counter()
        try:
            value = fn()
        except Exception as e:
            log_stage_error(stage.value, str(e), error_type=type(e).__name__)
            raise CommitStageError(stage, e) from e
        duration_ms = (time.perf_counter() - started) * 1000
        record_stage_time(stage.value, duration_ms)
        log_stage_complete(stage.value, duration_ms=round(duration_ms, 2))
        result.completed_stages.append(stage)
        return value

    def _run_persistent_stages(self, plan: CommitPlan, result: CommitResult) -> None:
        repo = self.repository

        self._run_stage(
            CommitStage.SAVE_OPENING_BALANCES,
            result,
            lambda: repo.save_opening_balances(plan.as_of_date, plan.balances, plan.reconciliation_notes),
        )
        self._audit(
            AuditEventType.OPENING_BALANCES_SAVED,
            f"Opening balances saved as of {plan.as_of_date.isoformat()}",
            plan,
            wine_total=str(plan.balances.wine_total()),
        )

        def create_batches() -> List[str]:
            ids = []
            for old_id in plan.superseded_commit_ids:
                repo.discard_legacy_batches(old_id)
            for batch_number, batch in zip(plan.batch_numbers(), plan.legacy_batches):
                batch_id = repo.create_legacy_batch(
                    batch_number=batch_number,
                    name=batch.name.strip(),
                    volume_gallons=batch.volume_gallons,
                    product_type=batch.product_type,
                    tax_class=batch.tax_class,
                    as_of_date=plan.as_of_date,
                    notes=batch.notes,
                    original_gravity=batch.original_gravity,
                    final_gravity=batch.final_gravity,
                    ph=batch.ph,
                    vessel_id=batch.vessel_id,
                    start_date=batch.start_date,
                )
                ids.append(batch_id)
                # Partial progress stays visible if a later batch fails
                result.legacy_batch_ids.append(batch_id)
                self._audit(
                    AuditEventType.LEGACY_BATCH_CREATED,
                    f"Legacy batch {batch_number} created",
                    plan,
                    batch_id=batch_id,
                    volume_gallons=str(batch.volume_gallons),
                    tax_class=batch.tax_class.value,
                )
            return ids

        self._run_stage(CommitStage.CREATE_LEGACY_BATCHES, result, create_batches)

        result.snapshot_id = self._run_stage(
            CommitStage.SAVE_RECONCILIATION_SNAPSHOT,
            result,
            lambda: repo.save_reconciliation_snapshot(plan.snapshot, plan.commit_id),
        )
        self._audit(
            AuditEventType.RECONCILIATION_SNAPSHOT_SAVED,
            f"Reconciliation snapshot {result.snapshot_id} saved",
            plan,
            snapshot_id=result.snapshot_id,
        )

        self._run_stage(
            CommitStage.MARK_ONBOARDING_COMPLETE,
            result,
            lambda: repo.mark_onboarding_complete(plan.completed_at),
        )

    def execute(self, plan: CommitPlan) -> CommitResult:
        result = CommitResult(commit_id=plan.commit_id, success=False, started_at=datetime.utcnow())

        with with_correlation(commit_id=plan.commit_id, as_of_date=plan.as_of_date.isoformat()):
            logger.info(
                f"Committing onboarding ({'atomic' if self.atomic else 'sequential'})",
                extra_fields={"legacy_batches": len(plan.legacy_batches)},
            )
            try:
                if self.atomic:
                    with self.repository.transaction():
                        self._run_persistent_stages(plan, result)
                else:
                    self._run_persistent_stages(plan, result)

                self._run_stage(CommitStage.INVALIDATE_CACHES, result, self._invalidate)

            except CommitStageError as e:
                result.failed_stage = e.stage
                result.error_message = str(e.cause)
                if self.atomic and e.stage != CommitStage.INVALIDATE_CACHES:
                    # Everything written in the transaction is gone
                    result.rolled_back = True
                    result.completed_stages = []
                    result.legacy_batch_ids = []
                    result.snapshot_id = None
                result.completed_at = datetime.utcnow()
                return result

        result.success = True
        result.completed_at = datetime.utcnow()
        return result

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate()


# =============================================================================
# Temporal Execution
# =============================================================================

def workflow_id_for(commit_id: str) -> str:
    return f"ttb-onboarding-{commit_id}"


class TemporalCommitExecutor(CommitExecutor):
    """Runs the persistent stages as TTBOnboardingCommitWorkflow.

    Args:
        client_factory: Coroutine function returning a connected Temporal client
        task_queue: Queue the worker polls
        cache: Read cache cleared locally once the workflow succeeds
        audit_logger: Optional audit sink
    """

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[Any]],
        task_queue: str,
        cache: Optional[InventoryReadCache] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(audit_logger)
        self.client_factory = client_factory
        self.task_queue = task_queue
        self.cache = cache

    @staticmethod
    def build_input(plan: CommitPlan) -> OnboardingCommitInput:
        return OnboardingCommitInput(
            commit_id=plan.commit_id,
            as_of_date=plan.as_of_date.isoformat(),
            balances=plan.balances.model_dump(mode="json", by_alias=True),
            snapshot=plan.snapshot.model_dump(mode="json", by_alias=True, exclude={"id", "created_at"}),
            reconciliation_notes=plan.reconciliation_notes,
            legacy_batches=[
                {"batch_number": number, "batch": batch.model_dump(mode="json", by_alias=True)}
                for number, batch in zip(plan.batch_numbers(), plan.legacy_batches)
            ],
            completed_at=plan.completed_at.isoformat(),
            superseded_commit_ids=list(plan.superseded_commit_ids),
        )

    async def execute_async(self, plan: CommitPlan) -> CommitResult:
        workflow_id = workflow_id_for(plan.commit_id)
        result = CommitResult(
            commit_id=plan.commit_id,
            success=False,
            started_at=datetime.utcnow(),
            workflow_id=workflow_id,
        )

        with with_correlation(commit_id=plan.commit_id, workflow_id=workflow_id):
            try:
                client = await self.client_factory()
            except Exception as e:
                result.error_message = str(e)
                log_stage_error("connect", result.error_message)
                result.completed_at = datetime.utcnow()
                return result

            logger.info(f"Starting {workflow_id} on {self.task_queue}")
            try:
                outcome = await client.execute_workflow(
                    TTBOnboardingCommitWorkflow.run,
                    self.build_input(plan),
                    id=workflow_id,
                    task_queue=self.task_queue,
                    # A retried draft reuses the id once the previous run has closed
                    id_reuse_policy=WorkflowIDReusePolicy.ALLOW_DUPLICATE,
                )
            except WorkflowAlreadyStartedError:
                result.error_message = f"Commit {plan.commit_id} is already running"
                result.completed_at = datetime.utcnow()
                return result
            except WorkflowFailureError as e:
                result.error_message = str(e.cause or e)
                log_stage_error("workflow", result.error_message)
                result.completed_at = datetime.utcnow()
                return result
            except Exception as e:
                # RPCError and other client-side failures
                result.error_message = str(e)
                log_stage_error("workflow", result.error_message)
                result.completed_at = datetime.utcnow()
                return result

            result.completed_stages = [CommitStage(s) for s in outcome.get("completed_stages", [])]
            result.legacy_batch_ids = list(outcome.get("legacy_batch_ids", []))
            result.snapshot_id = outcome.get("snapshot_id")

            if outcome.get("status") != "COMPLETED":
                result.failed_stage = CommitStage(outcome["failed_stage"]) if outcome.get("failed_stage") else None
                result.error_message = outcome.get("error_message") or "Commit workflow failed"
                log_stage_error(result.failed_stage.value if result.failed_stage else "workflow", result.error_message)
                result.completed_at = datetime.utcnow()
                return result

            try:
                if self.cache is not None:
                    self.cache.invalidate()
                result.completed_stages.append(CommitStage.INVALIDATE_CACHES)
            except Exception as e:
                result.failed_stage = CommitStage.INVALIDATE_CACHES
                result.error_message = str(e)
                result.completed_at = datetime.utcnow()
                return result

        result.success = True
        result.completed_at = datetime.utcnow()
        return result

    def execute(self, plan: CommitPlan) -> CommitResult:
        return asyncio.run(self.execute_async(plan))
