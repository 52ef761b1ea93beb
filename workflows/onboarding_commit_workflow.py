"""TTB Onboarding Commit Workflow.

Durable version of the onboarding commit: runs the four persistent
stages as activities, strictly in order, stopping at the first stage
that fails after retries.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from activities.commit import (
        save_opening_balances,
        create_legacy_batch,
        discard_legacy_batches,
        save_reconciliation_snapshot,
        mark_onboarding_complete,
        SaveOpeningBalancesInput,
        CreateLegacyBatchInput,
        DiscardLegacyBatchesInput,
        SaveReconciliationSnapshotInput,
        MarkOnboardingCompleteInput,
    )
    from core.workflow.base import CommitStage


ACTIVITY_TIMEOUT = timedelta(seconds=30)
ACTIVITY_RETRY_POLICY = RetryPolicy(
    initial_interval=timedelta(seconds=1),
    backoff_coefficient=2.0,
    maximum_attempts=3,
    non_retryable_error_types=["ValidationError", "ValueError"],
)


@dataclass
class OnboardingCommitInput:
    """Input for TTB Onboarding Commit Workflow.

    Attributes:
        commit_id: Onboarding commit attempt (stable across retries of a draft)
        as_of_date: Opening balance date (YYYY-MM-DD)
        balances: OpeningBalances dumped in JSON mode
        reconciliation_notes: Step 1 notes
        legacy_batches: [{"batch_number": ..., "batch": LegacyBatchInput JSON}]
        snapshot: ReconciliationSnapshot dumped in JSON mode
        completed_at: Completion timestamp to record (ISO)
        superseded_commit_ids: Earlier attempts of the same draft whose batches are discarded
    """
    commit_id: str
    as_of_date: str
    balances: dict
    snapshot: dict
    reconciliation_notes: Optional[str] = None
    legacy_batches: List[dict] = field(default_factory=list)
    completed_at: Optional[str] = None
    superseded_commit_ids: List[str] = field(default_factory=list)


def _error_message(err: ActivityError) -> str:
    cause = err.cause
    if cause is not None and getattr(cause, "message", None):
        return cause.message
    return str(cause or err)


@workflow.defn
class TTBOnboardingCommitWorkflow:
    """Workflow for committing a completed onboarding draft.

    Stages:
    1. Save opening balances
    2. Create each legacy batch
    3. Save the reconciliation snapshot
    4. Mark onboarding complete

    Cache invalidation happens in the caller once the workflow succeeds.
    """

    def __init__(self) -> None:
        self._completed_stages: List[str] = []

    @workflow.query
    def completed_stages(self) -> List[str]:
        return list(self._completed_stages)

    @workflow.run
    async def run(self, input: OnboardingCommitInput) -> dict:
        """Execute the commit.

        Returns:
            dict with commit_id, status (COMPLETED or FAILED), completed_stages,
            failed_stage, error_message, snapshot_id and legacy_batch_ids
        """
        workflow.logger.info(f"Starting TTB onboarding commit {input.commit_id} as of {input.as_of_date}")

        result = {
            "commit_id": input.commit_id,
            "status": "FAILED",
            "completed_stages": self._completed_stages,
            "failed_stage": None,
            "error_message": None,
            "snapshot_id": None,
            "legacy_batch_ids": [],
        }

        stage = CommitStage.SAVE_OPENING_BALANCES
        try:
            # Stage 1: Opening balances
            await workflow.execute_activity(
                save_opening_balances,
                SaveOpeningBalancesInput(
                    commit_id=input.commit_id,
                    as_of_date=input.as_of_date,
                    balances=input.balances,
                    reconciliation_notes=input.reconciliation_notes,
                ),
                start_to_close_timeout=ACTIVITY_TIMEOUT,
                retry_policy=ACTIVITY_RETRY_POLICY,
            )
            self._completed_stages.append(stage.value)
            workflow.logger.info("Opening balances saved")

            # Stage 2: Legacy batches, one activity each
            stage = CommitStage.CREATE_LEGACY_BATCHES
            if input.superseded_commit_ids:
                await workflow.execute_activity(
                    discard_legacy_batches,
                    DiscardLegacyBatchesInput(
                        commit_id=input.commit_id,
                        superseded_commit_ids=input.superseded_commit_ids,
                    ),
                    start_to_close_timeout=ACTIVITY_TIMEOUT,
                    retry_policy=ACTIVITY_RETRY_POLICY,
                )
            for planned in input.legacy_batches:
                batch_result = await workflow.execute_activity(
                    create_legacy_batch,
                    CreateLegacyBatchInput(
                        commit_id=input.commit_id,
                        batch_number=planned["batch_number"],
                        as_of_date=input.as_of_date,
                        batch=planned["batch"],
                    ),
                    start_to_close_timeout=ACTIVITY_TIMEOUT,
                    retry_policy=ACTIVITY_RETRY_POLICY,
                )
                result["legacy_batch_ids"].append(batch_result["batch_id"])
            self._completed_stages.append(stage.value)
            workflow.logger.info(f"Created {len(input.legacy_batches)} legacy batches")

            # Stage 3: Reconciliation snapshot
            stage = CommitStage.SAVE_RECONCILIATION_SNAPSHOT
            snapshot_result = await workflow.execute_activity(
                save_reconciliation_snapshot,
                SaveReconciliationSnapshotInput(commit_id=input.commit_id, snapshot=input.snapshot),
                start_to_close_timeout=ACTIVITY_TIMEOUT,
                retry_policy=ACTIVITY_RETRY_POLICY,
            )
            result["snapshot_id"] = snapshot_result["snapshot_id"]
            self._completed_stages.append(stage.value)
            workflow.logger.info(f"Reconciliation snapshot saved: {snapshot_result['snapshot_id']}")

            # Stage 4: Completion flag
            stage = CommitStage.MARK_ONBOARDING_COMPLETE
            await workflow.execute_activity(
                mark_onboarding_complete,
                MarkOnboardingCompleteInput(commit_id=input.commit_id, completed_at=input.completed_at),
                start_to_close_timeout=ACTIVITY_TIMEOUT,
                retry_policy=ACTIVITY_RETRY_POLICY,
            )
            self._completed_stages.append(stage.value)

        except ActivityError as e:
            message = _error_message(e)
            workflow.logger.error(f"Commit {input.commit_id} failed at {stage.value}: {message}")
            result["failed_stage"] = stage.value
            result["error_message"] = message
            result["completed_stages"] = list(self._completed_stages)
            return result

        workflow.logger.info(f"TTB onboarding commit {input.commit_id} completed")
        result["status"] = "COMPLETED"
        result["completed_stages"] = list(self._completed_stages)
        return result
