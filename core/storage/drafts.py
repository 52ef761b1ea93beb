"""Draft storage for resumable wizard state.

A draft is one JSON document per key. Stores only move bytes; callers
decide what a draft means and how to treat one they cannot parse.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Union

ONBOARDING_DRAFT_KEY = "ttb-onboarding-draft"


class DraftStore(ABC):
    """Key/value store for in-progress drafts."""
    
    @abstractmethod
    def load(self, key: str) -> Optional[dict]:
        """Return the stored draft, or None when nothing is stored.
        
        Raises:
            ValueError: If the stored content is not a JSON object
        """
        pass
    
    @abstractmethod
    def save(self, key: str, data: dict) -> None:
        """Replace the stored draft."""
        pass
    
    @abstractmethod
    def clear(self, key: str) -> None:
        """Remove the stored draft (no-op when absent)."""
        pass
    
    def exists(self, key: str) -> bool:
        try:
            return self.load(key) is not None
        except ValueError:
            return True


def _decode(raw: str) -> dict:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Draft must be a JSON object, got {type(data).__name__}")
    return data


class FileDraftStore(DraftStore):
    """Drafts as <key>.json files in a directory."""
    
    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
    
    def _path(self, key: str) -> Path:
        return self.base_path / f"{key}.json"
    
    def load(self, key: str) -> Optional[dict]:
        path = self._path(key)
        if not path.exists():
            return None
        return _decode(path.read_text(encoding="utf-8"))
    
    def save(self, key: str, data: dict) -> None:
        path = self._path(key)
        # Write then rename so a crash never leaves half a draft behind
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp_path.replace(path)
    
    def clear(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
    
    def exists(self, key: str) -> bool:
        return self._path(key).exists()


class InMemoryDraftStore(DraftStore):
    """In-memory draft store for testing and single-process use."""
    
    def __init__(self):
        self._drafts: Dict[str, str] = {}
        self._lock = Lock()
    
    def load(self, key: str) -> Optional[dict]:
        with self._lock:
            raw = self._drafts.get(key)
        if raw is None:
            return None
        return _decode(raw)
    
    def save(self, key: str, data: dict) -> None:
        with self._lock:
            self._drafts[key] = json.dumps(data)
    
    def save_raw(self, key: str, raw: str) -> None:
        """Store raw text as-is (for simulating corrupted drafts)."""
        with self._lock:
            self._drafts[key] = raw
    
    def clear(self, key: str) -> None:
        with self._lock:
            self._drafts.pop(key, None)
    
    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._drafts
