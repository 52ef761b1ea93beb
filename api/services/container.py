"""Service wiring for the API.

One Services object per app holds the repository, caches, draft store,
audit logger and commit executor. Routes get it through get_services().
"""

from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock

from fastapi import Request

from core.audit.events import AuditLogger, JSONFileAuditBackend
from core.config import COMMIT_MODE_TEMPORAL, Settings
from core.storage.drafts import DraftStore, FileDraftStore
from inventory.cache import InventoryReadCache
from inventory.db import InventoryRepository
from temporal_client import get_temporal_client
from workflows.commit import CommitExecutor, LocalCommitExecutor, TemporalCommitExecutor
from workflows.onboarding import OnboardingWizard


@dataclass
class Services:
    """Collaborators shared by all requests."""
    repository: InventoryRepository
    cache: InventoryReadCache
    draft_store: DraftStore
    audit_logger: AuditLogger
    executor: CommitExecutor
    # Wizard requests read-modify-write one draft
    wizard_lock: RLock = field(default_factory=RLock)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        repository = InventoryRepository(
            settings.db_path,
            artifacts_dir=settings.artifacts_dir,
            organization_id=settings.organization_id,
        )
        cache = InventoryReadCache(repository)

        audit_logger = AuditLogger()
        audit_logger.add_backend(JSONFileAuditBackend(Path(settings.audit_dir)))

        if settings.commit_mode == COMMIT_MODE_TEMPORAL:
            executor = TemporalCommitExecutor(
                get_temporal_client,
                settings.task_queue,
                cache=cache,
                audit_logger=audit_logger,
            )
        else:
            executor = LocalCommitExecutor(
                repository,
                cache=cache,
                atomic=settings.commit_atomic,
                audit_logger=audit_logger,
            )

        return cls(
            repository=repository,
            cache=cache,
            draft_store=FileDraftStore(settings.drafts_dir),
            audit_logger=audit_logger,
            executor=executor,
        )

    def wizard(self) -> OnboardingWizard:
        """Wizard over the current draft."""
        return OnboardingWizard(
            self.draft_store,
            self.cache,
            self.executor,
            audit_logger=self.audit_logger,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services
