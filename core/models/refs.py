"""Data reference and audit models for artifact storage and tracking."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class DataReference(BaseModel):
    """Reference to a stored artifact with metadata for retrieval and verification.
    
    Attributes:
        storage_uri: Absolute file path to the artifact
        content_hash: SHA256 hash of the content for integrity verification
        content_type: MIME type (e.g., "application/json")
        size_bytes: Size of the artifact in bytes
        stored_at: Timestamp when the artifact was stored
    """
    storage_uri: str = Field(..., description="Absolute file path to the artifact")
    content_hash: str = Field(..., description="SHA256 hash of content")
    content_type: str = Field(default="application/json", description="MIME type")
    size_bytes: int = Field(..., description="Size in bytes")
    stored_at: datetime = Field(default_factory=datetime.utcnow, description="Storage timestamp")


# =============================================================================
# Audit Event Models
# =============================================================================

class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AuditEvent(BaseModel):
    """An audit event for tracking onboarding and commit actions.
    
    Provides traceability from the first opening balance entry through
    the final reconciliation snapshot.
    """
    event_id: str = Field(..., description="Unique event identifier")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Event timestamp")
    event_type: str = Field(..., description="Type of event (STEP_CHANGED, COMMIT_STARTED, etc.)")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO, description="Event severity")
    
    # Context
    organization_id: Optional[str] = Field(None, description="Organization being onboarded")
    commit_id: Optional[str] = Field(None, description="Onboarding commit attempt")
    workflow_id: Optional[str] = Field(None, description="Temporal workflow ID")
    activity_name: Optional[str] = Field(None, description="Activity that generated event")
    step: Optional[int] = Field(None, description="Wizard step at the time of the event")
    
    # Details
    message: str = Field(..., description="Human-readable message")
    details: dict = Field(default_factory=dict, description="Additional event details")
    
    # Actor
    actor: str = Field(default="system", description="Who/what performed the action")
    
    # Evidence
    artifact_refs: list[DataReference] = Field(default_factory=list, description="Related artifacts")
