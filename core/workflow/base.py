"""Base workflow types and utilities."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


class OnboardingStep(IntEnum):
    """Wizard steps, in order."""
    OPENING_BALANCES = 1
    RECONCILIATION = 2
    GAP_RESOLUTION = 3
    REVIEW = 4


FIRST_STEP = OnboardingStep.OPENING_BALANCES
LAST_STEP = OnboardingStep.REVIEW


class CommitStage(str, Enum):
    """Commit protocol stages, in execution order."""
    SAVE_OPENING_BALANCES = "save_opening_balances"
    CREATE_LEGACY_BATCHES = "create_legacy_batches"
    SAVE_RECONCILIATION_SNAPSHOT = "save_reconciliation_snapshot"
    MARK_ONBOARDING_COMPLETE = "mark_onboarding_complete"
    INVALIDATE_CACHES = "invalidate_caches"


COMMIT_STAGES = tuple(CommitStage)


@dataclass
class CommitResult:
    """Outcome of one commit attempt."""
    commit_id: Optional[str]
    success: bool
    started_at: datetime
    completed_at: Optional[datetime] = None
    
    # Progress
    completed_stages: List[CommitStage] = field(default_factory=list)
    failed_stage: Optional[CommitStage] = None
    
    # Outputs
    snapshot_id: Optional[int] = None
    legacy_batch_ids: List[str] = field(default_factory=list)
    workflow_id: Optional[str] = None
    
    # Error information
    error_message: Optional[str] = None
    rolled_back: bool = False

    @classmethod
    def rejected(cls, message: str, commit_id: Optional[str] = None) -> "CommitResult":
        """A commit refused before any side effect."""
        now = datetime.utcnow()
        return cls(
            commit_id=commit_id,
            success=False,
            started_at=now,
            completed_at=now,
            error_message=message,
        )
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "commit_id": self.commit_id,
            "success": self.success,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_stages": [stage.value for stage in self.completed_stages],
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "snapshot_id": self.snapshot_id,
            "legacy_batch_ids": list(self.legacy_batch_ids),
            "workflow_id": self.workflow_id,
            "rolled_back": self.rolled_back,
            "error": {
                "message": self.error_message,
                "stage": self.failed_stage.value if self.failed_stage else None,
            } if self.error_message else None,
        }
