"""Workflow definitions module."""

from workflows.onboarding_commit_workflow import TTBOnboardingCommitWorkflow, OnboardingCommitInput

__all__ = ["TTBOnboardingCommitWorkflow", "OnboardingCommitInput"]
