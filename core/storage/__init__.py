"""Core storage - artifact archive and draft storage."""

from core.storage.artifacts import (
    put_json,
    get_json,
)
from core.storage.drafts import (
    ONBOARDING_DRAFT_KEY,
    DraftStore,
    FileDraftStore,
    InMemoryDraftStore,
)

__all__ = [
    "put_json",
    "get_json",
    "ONBOARDING_DRAFT_KEY",
    "DraftStore",
    "FileDraftStore",
    "InMemoryDraftStore",
]
