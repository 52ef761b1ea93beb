"""Core workflow module - onboarding step and commit protocol types.

Temporal workflow definitions live in the top-level workflows/ folder.
"""

from core.workflow.base import (
    OnboardingStep,
    FIRST_STEP,
    LAST_STEP,
    CommitStage,
    COMMIT_STAGES,
    CommitResult,
)

__all__ = [
    "OnboardingStep",
    "FIRST_STEP",
    "LAST_STEP",
    "CommitStage",
    "COMMIT_STAGES",
    "CommitResult",
]
