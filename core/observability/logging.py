"""
Structured Logging with Correlation IDs

Provides logging utilities that automatically include:
- organization_id: Links logs to the organization being onboarded
- commit_id: Links logs to one onboarding commit attempt
- workflow_id: Links logs to Temporal workflow execution
- step / as_of_date: Links wizard logs to the step and balance date

Usage:
    from core.observability.logging import get_logger, with_correlation
    
    logger = get_logger(__name__)
    
    with with_correlation(commit_id="3f2a...", workflow_id="ttb-onboarding-3f2a..."):
        logger.info("Saving opening balances")  # Automatically includes correlation IDs
"""

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, Dict, Any
from contextlib import contextmanager


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass
class CorrelationContext:
    """Context for correlating logs across the wizard and commit execution."""
    organization_id: Optional[str] = None
    onboarding_id: Optional[str] = None
    commit_id: Optional[str] = None
    workflow_id: Optional[str] = None
    activity_name: Optional[str] = None
    
    # Wizard context
    step: Optional[int] = None
    as_of_date: Optional[str] = None
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}
    
    def merge(self, **kwargs) -> "CorrelationContext":
        """Create a new context with merged values."""
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


# Context variable for async/thread-safe correlation
_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    """Get the current correlation context."""
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """
    Context manager to set correlation IDs for logging.
    
    Usage:
        with with_correlation(commit_id="3f2a...", step=4):
            logger.info("Committing")  # Will include commit_id and step
    """
    old_ctx = get_correlation_context()
    new_ctx = old_ctx.merge(**kwargs)
    token = _correlation_context.set(new_ctx)
    try:
        yield new_ctx
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Structured JSON Formatter
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that includes correlation context.
    
    Output format:
    {
        "timestamp": "2025-01-09T12:00:00.000Z",
        "level": "INFO",
        "logger": "workflows.commit",
        "message": "Stage completed: save_opening_balances",
        "commit_id": "3f2a...",
        "duration_ms": 12.5
    }
    """
    
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        
        ctx = get_correlation_context()
        log_data.update(ctx.to_dict())
        
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)
        
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        
        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter that includes key correlation IDs.
    
    Output format:
    2025-01-09 12:00:00 [INFO ] workflows.commit [3f2a1b9c/step:4]: Committing
    """
    
    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()
        
        correlation_parts = []
        if ctx.organization_id:
            correlation_parts.append(ctx.organization_id)
        if ctx.commit_id:
            correlation_parts.append(ctx.commit_id[:8])
        if ctx.workflow_id:
            wf_short = ctx.workflow_id[:24] if len(ctx.workflow_id) > 24 else ctx.workflow_id
            correlation_parts.append(wf_short)
        if ctx.step:
            correlation_parts.append(f"step:{ctx.step}")
        
        correlation = "/".join(correlation_parts) if correlation_parts else "-"
        
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")
        
        msg = f"{timestamp} [{record.levelname:5}] {record.name} [{correlation}]: {record.getMessage()}"
        
        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        
        return msg


# =============================================================================
# Logger with Correlation Support
# =============================================================================

class CorrelatedLogger:
    """
    Logger wrapper that automatically includes correlation context.
    
    Also supports adding extra fields to individual log calls.
    """
    
    def __init__(self, logger: logging.Logger):
        self._logger = logger
    
    @property
    def name(self) -> str:
        return self._logger.name
    
    def _log(self, level: int, msg: str, *args, **kwargs):
        """Log with extra fields support."""
        extra_fields = kwargs.pop("extra_fields", {})
        exc_info = kwargs.pop("exc_info", None)
        if exc_info is True:
            exc_info = sys.exc_info()
        
        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "(unknown file)",
            0,
            msg,
            args,
            exc_info,
        )
        record.extra_fields = extra_fields
        
        self._logger.handle(record)
    
    def debug(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.DEBUG):
            self._log(logging.DEBUG, msg, *args, **kwargs)
    
    def info(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.INFO):
            self._log(logging.INFO, msg, *args, **kwargs)
    
    def warning(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.WARNING):
            self._log(logging.WARNING, msg, *args, **kwargs)
    
    def error(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.ERROR):
            self._log(logging.ERROR, msg, *args, **kwargs)
    
    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self.error(msg, *args, **kwargs)
    
    # Delegate other methods
    def setLevel(self, level):
        self._logger.setLevel(level)
    
    def isEnabledFor(self, level):
        return self._logger.isEnabledFor(level)


# =============================================================================
# Logger Factory
# =============================================================================

_loggers: Dict[str, CorrelatedLogger] = {}
_configured = False


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    include_temporal: bool = True,
):
    """
    Configure logging for the application.
    
    Args:
        level: Logging level
        json_format: If True, use JSON format; otherwise human-readable
        include_temporal: If True, also configure Temporal SDK loggers
    """
    global _configured
    
    if _configured:
        return
    
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter())
    
    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)
    
    for logger_name in ["activities", "workflows", "api", "core", "inventory", "reconciliation"]:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
    
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    
    if include_temporal:
        # Temporal SDK logs - keep at INFO to see workflow events
        logging.getLogger("temporalio").setLevel(logging.INFO)
    
    _configured = True


def get_logger(name: str) -> CorrelatedLogger:
    """
    Get a correlated logger for the given name.
    
    Args:
        name: Logger name (typically __name__)
        
    Returns:
        CorrelatedLogger instance
    """
    if name not in _loggers:
        if not _configured:
            configure_logging()
        
        base_logger = logging.getLogger(name)
        _loggers[name] = CorrelatedLogger(base_logger)
    
    return _loggers[name]


# =============================================================================
# Convenience Functions for the Commit Protocol
# =============================================================================

def log_stage_start(stage: str, **kwargs):
    """Log commit stage start with correlation."""
    logger = get_logger("workflows.commit")
    logger.info(f"Stage started: {stage}", extra_fields=kwargs)


def log_stage_complete(stage: str, duration_ms: float = None, **kwargs):
    """Log commit stage completion with correlation."""
    logger = get_logger("workflows.commit")
    extra = {"duration_ms": duration_ms} if duration_ms is not None else {}
    extra.update(kwargs)
    logger.info(f"Stage completed: {stage}", extra_fields=extra)


def log_stage_error(stage: str, error: str, **kwargs):
    """Log commit stage error with correlation."""
    logger = get_logger("workflows.commit")
    logger.error(f"Stage failed: {stage} - {error}", extra_fields=kwargs)
