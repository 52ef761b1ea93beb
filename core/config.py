"""Application settings loaded from the environment.

A repo-root .env file is loaded first when present, the same way the
Temporal client picks up its credentials.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]

env_path = ROOT_DIR / ".env"
if env_path.exists():
    load_dotenv(env_path)


COMMIT_MODE_LOCAL = "local"
COMMIT_MODE_TEMPORAL = "temporal"
DEFAULT_TASK_QUEUE = "ttb-default"


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime configuration.
    
    Attributes:
        db_path: SQLite database holding balances, batches and snapshots
        artifacts_dir: Where archived reconciliation snapshots are written
        drafts_dir: Where wizard drafts are kept between sessions
        audit_dir: Where JSON audit files are written
        commit_mode: "local" runs the commit in-process, "temporal" runs it as a workflow
        commit_atomic: Run commit stages 1-4 in one database transaction
        task_queue: Temporal task queue for the commit workflow
        organization_id: Organization whose inventory this deployment manages
        log_json: Emit JSON log lines instead of human-readable ones
        log_level: Root log level name
    """
    db_path: Path
    artifacts_dir: Path
    drafts_dir: Path
    audit_dir: Path
    commit_mode: str = COMMIT_MODE_LOCAL
    commit_atomic: bool = False
    task_queue: str = DEFAULT_TASK_QUEUE
    organization_id: str = "default"
    log_json: bool = False
    log_level: str = "INFO"
    
    @classmethod
    def from_env(cls) -> "Settings":
        commit_mode = os.getenv("TTB_COMMIT_MODE", COMMIT_MODE_LOCAL).strip().lower()
        if commit_mode not in (COMMIT_MODE_LOCAL, COMMIT_MODE_TEMPORAL):
            raise ValueError(
                f"TTB_COMMIT_MODE must be '{COMMIT_MODE_LOCAL}' or '{COMMIT_MODE_TEMPORAL}', got '{commit_mode}'"
            )
        
        data_dir = ROOT_DIR / "data"
        return cls(
            db_path=Path(os.getenv("TTB_DB_PATH", str(ROOT_DIR / "ttb_inventory.db"))),
            artifacts_dir=Path(os.getenv("TTB_ARTIFACTS_DIR", str(data_dir / "artifacts"))),
            drafts_dir=Path(os.getenv("TTB_DRAFTS_DIR", str(data_dir / "drafts"))),
            audit_dir=Path(os.getenv("TTB_AUDIT_DIR", str(data_dir / "audit"))),
            commit_mode=commit_mode,
            commit_atomic=_env_flag("TTB_COMMIT_ATOMIC"),
            task_queue=os.getenv("TTB_TASK_QUEUE", DEFAULT_TASK_QUEUE),
            organization_id=os.getenv("TTB_ORGANIZATION_ID", "default"),
            log_json=_env_flag("TTB_LOG_JSON"),
            log_level=os.getenv("TTB_LOG_LEVEL", "INFO").upper(),
        )
    
    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level)
        return level if isinstance(level, int) else logging.INFO


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Settings for this process, read from the environment once."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
