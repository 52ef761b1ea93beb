"""Audit event logging and persistence.

Provides structured audit logging for onboarding actions, from the first
opening balance entry through the committed reconciliation snapshot.
Supports multiple persistence backends.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models.refs import AuditEvent, AuditSeverity, DataReference
from core.observability.logging import get_logger

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Standard audit event types."""
    # Wizard events
    ONBOARDING_STARTED = "ONBOARDING_STARTED"
    STEP_CHANGED = "STEP_CHANGED"
    RECONCILIATION_CALCULATED = "RECONCILIATION_CALCULATED"
    LEGACY_BATCH_ADDED = "LEGACY_BATCH_ADDED"
    LEGACY_BATCH_REMOVED = "LEGACY_BATCH_REMOVED"
    DRAFT_RESET = "DRAFT_RESET"
    
    # Commit events
    COMMIT_STARTED = "COMMIT_STARTED"
    OPENING_BALANCES_SAVED = "OPENING_BALANCES_SAVED"
    LEGACY_BATCH_CREATED = "LEGACY_BATCH_CREATED"
    RECONCILIATION_SNAPSHOT_SAVED = "RECONCILIATION_SNAPSHOT_SAVED"
    ONBOARDING_COMPLETED = "ONBOARDING_COMPLETED"
    COMMIT_FAILED = "COMMIT_FAILED"


def create_audit_event(
    event_type: AuditEventType,
    message: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    organization_id: Optional[str] = None,
    commit_id: Optional[str] = None,
    workflow_id: Optional[str] = None,
    activity_name: Optional[str] = None,
    step: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    actor: str = "system",
    artifact_refs: Optional[List[DataReference]] = None,
) -> AuditEvent:
    """Create a new audit event with auto-generated ID and timestamp.
    
    Args:
        event_type: Type of event
        message: Human-readable message
        severity: Event severity level
        organization_id: Organization being onboarded
        commit_id: Onboarding commit attempt
        workflow_id: Temporal workflow ID
        activity_name: Activity that generated the event
        step: Wizard step at the time of the event
        details: Additional structured details
        actor: Who/what performed the action
        artifact_refs: Related artifact references
        
    Returns:
        Configured AuditEvent ready for logging
    """
    return AuditEvent(
        event_id=str(uuid.uuid4()),
        timestamp=datetime.utcnow(),
        event_type=event_type.value,
        severity=severity,
        organization_id=organization_id,
        commit_id=commit_id,
        workflow_id=workflow_id,
        activity_name=activity_name,
        step=step,
        message=message,
        details=details or {},
        actor=actor,
        artifact_refs=artifact_refs or [],
    )


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""
    
    @abstractmethod
    def log(self, event: AuditEvent) -> None:
        """Persist an audit event."""
        pass
    
    @abstractmethod
    def query(
        self,
        event_type: Optional[str] = None,
        commit_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query audit events with filters."""
        pass


def _matches(
    event: AuditEvent,
    event_type: Optional[str],
    commit_id: Optional[str],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> bool:
    if event_type and event.event_type != event_type:
        return False
    if commit_id and event.commit_id != commit_id:
        return False
    if start_time and event.timestamp < start_time:
        return False
    if end_time and event.timestamp > end_time:
        return False
    return True


class JSONFileAuditBackend(AuditBackend):
    """Audit backend that stores events in JSON files.
    
    Stores one file per day in YYYY-MM-DD.json format.
    """
    
    def __init__(self, base_path: Path):
        """Initialize with base directory for audit files."""
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
    
    def _get_file_path(self, day: datetime) -> Path:
        """Get file path for a given date."""
        return self.base_path / f"{day.strftime('%Y-%m-%d')}.json"
    
    def log(self, event: AuditEvent) -> None:
        """Append event to daily file."""
        file_path = self._get_file_path(event.timestamp)
        
        events = []
        if file_path.exists():
            with open(file_path, "r", encoding="utf-8") as f:
                events = json.load(f)
        
        events.append(event.model_dump(mode="json"))
        
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(events, f, indent=2)
    
    def query(
        self,
        event_type: Optional[str] = None,
        commit_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from JSON files."""
        results = []
        
        if start_time is None:
            start_time = datetime(2020, 1, 1)
        if end_time is None:
            end_time = datetime.utcnow()
        
        current = datetime(start_time.year, start_time.month, start_time.day)
        while current <= end_time and len(results) < limit:
            file_path = self._get_file_path(current)
            if file_path.exists():
                with open(file_path, "r", encoding="utf-8") as f:
                    events = json.load(f)
                
                for event_data in events:
                    event = AuditEvent.model_validate(event_data)
                    if not _matches(event, event_type, commit_id, start_time, end_time):
                        continue
                    results.append(event)
                    if len(results) >= limit:
                        break
            
            current += timedelta(days=1)
        
        return results


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend for testing."""
    
    def __init__(self):
        self._events: List[AuditEvent] = []
    
    def log(self, event: AuditEvent) -> None:
        self._events.append(event)
    
    def query(
        self,
        event_type: Optional[str] = None,
        commit_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        results = []
        for event in self._events:
            if not _matches(event, event_type, commit_id, start_time, end_time):
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results
    
    def clear(self) -> None:
        """Clear all events (for testing)."""
        self._events.clear()


class AuditLogger:
    """Main audit logger that supports multiple backends.
    
    Usage:
        audit = AuditLogger()
        audit.add_backend(JSONFileAuditBackend(Path("./audit")))
        
        audit.log_info(
            AuditEventType.ONBOARDING_COMPLETED,
            "Opening balances committed",
            commit_id="0f3c...",
        )
    """
    
    def __init__(self):
        self._backends: List[AuditBackend] = []
    
    def add_backend(self, backend: AuditBackend) -> None:
        """Add an audit backend."""
        self._backends.append(backend)
    
    def log(self, event: AuditEvent) -> None:
        """Log event to all backends."""
        for backend in self._backends:
            try:
                backend.log(event)
            except Exception as e:
                # Audit failures must not break the wizard or the commit
                logger.error(
                    f"Audit logging failed for backend {type(backend).__name__}: {e}",
                    extra_fields={"event_type": event.event_type},
                )
    
    def log_info(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log an INFO level event."""
        event = create_audit_event(event_type, message, AuditSeverity.INFO, **kwargs)
        self.log(event)
    
    def log_error(
        self,
        event_type: AuditEventType,
        message: str,
        **kwargs,
    ) -> None:
        """Log an ERROR level event."""
        event = create_audit_event(event_type, message, AuditSeverity.ERROR, **kwargs)
        self.log(event)
    
    def query(
        self,
        event_type: Optional[str] = None,
        commit_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """Query events from all backends (returns first backend's results)."""
        if not self._backends:
            return []
        return self._backends[0].query(event_type, commit_id, start_time, end_time, limit)
