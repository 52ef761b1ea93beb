"""Artifact storage abstraction for JSON data.

Provides a consistent interface for archiving and retrieving JSON
artifacts (reconciliation snapshots) with integrity verification and
metadata tracking.
"""

import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Any

from core.models.refs import DataReference


def _compute_sha256(data: bytes) -> str:
    """Compute SHA256 hash of bytes."""
    return hashlib.sha256(data).hexdigest()


def put_json(obj: Any, path: Path, ensure_parent: bool = True) -> DataReference:
    """Store a JSON-serializable object and return a DataReference.
    
    Args:
        obj: Object to serialize to JSON (dict or Pydantic model)
        path: Absolute file path where artifact will be stored
        ensure_parent: Create parent directories if they don't exist
        
    Returns:
        DataReference with artifact metadata for retrieval
        
    Raises:
        TypeError: If object is not JSON-serializable
    """
    if ensure_parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    
    # Pydantic models are dumped in their wire (camelCase) shape
    if hasattr(obj, "model_dump"):
        obj_dict = obj.model_dump(mode="json", by_alias=True)
    else:
        obj_dict = obj
    
    json_bytes = json.dumps(obj_dict, indent=2, sort_keys=True).encode("utf-8")
    
    path.write_bytes(json_bytes)
    
    return DataReference(
        storage_uri=str(path.absolute()),
        content_hash=_compute_sha256(json_bytes),
        content_type="application/json",
        size_bytes=len(json_bytes),
        stored_at=datetime.utcnow(),
    )


def get_json(ref: DataReference, validate_hash: bool = True) -> dict:
    """Retrieve JSON artifact from a DataReference.
    
    Args:
        ref: DataReference pointing to the artifact
        validate_hash: Verify content hash matches reference
        
    Returns:
        Deserialized JSON object
        
    Raises:
        FileNotFoundError: If artifact path doesn't exist
        ValueError: If hash validation fails
        json.JSONDecodeError: If file is not valid JSON
    """
    path = Path(ref.storage_uri)
    
    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {ref.storage_uri}")
    
    json_bytes = path.read_bytes()
    
    if validate_hash:
        actual_hash = _compute_sha256(json_bytes)
        if actual_hash != ref.content_hash:
            raise ValueError(
                f"Hash mismatch for {ref.storage_uri}: "
                f"expected {ref.content_hash}, got {actual_hash}"
            )
    
    return json.loads(json_bytes.decode("utf-8"))
