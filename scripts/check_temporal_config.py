"""Temporal connection check for the onboarding commit worker.

Verifies that the variables temporal_client.py reads are set before
switching TTB_COMMIT_MODE to temporal.
"""

import os
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import COMMIT_MODE_TEMPORAL, get_settings


def check_temporal_config() -> bool:
    """Print the Temporal configuration status.

    Returns:
        True when an endpoint and credentials (API key or client cert) are set
    """
    settings = get_settings()

    print("\n" + "=" * 70)
    print("TEMPORAL CONFIGURATION CHECK")
    print("=" * 70 + "\n")

    endpoint = os.getenv("TEMPORAL_ENDPOINT")
    namespace = os.getenv("TEMPORAL_NAMESPACE")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")
    key_path = os.getenv("TEMPORAL_KEY_PATH")

    status = {
        "TEMPORAL_ENDPOINT": ("✓" if endpoint else "✗", endpoint or "NOT SET"),
        "TEMPORAL_NAMESPACE": ("✓" if namespace else "✓ (optional)", namespace or "default"),
        "TEMPORAL_API_KEY": ("✓" if api_key else "~ (optional)", "SET" if api_key else "NOT SET"),
        "TEMPORAL_CERT_PATH": ("✓" if cert_path else "~ (optional)", cert_path or "NOT SET"),
        "TEMPORAL_KEY_PATH": ("✓" if key_path else "~ (optional)", key_path or "NOT SET"),
        "TTB_COMMIT_MODE": ("✓", settings.commit_mode),
        "TTB_TASK_QUEUE": ("✓", settings.task_queue),
    }

    for var, (check, val) in status.items():
        print(f"{check} {var}")
        print(f"   Value: {val}")

    if cert_path and not Path(cert_path).exists():
        print(f"\n✗ Client certificate not found: {cert_path}")
        return False

    print("\n" + "=" * 70)

    if endpoint and (api_key or cert_path):
        print("✓ READY FOR TEMPORAL CLOUD")
    elif endpoint:
        print("✓ READY FOR A LOCAL TEMPORAL SERVER (no credentials)")
    else:
        print("✗ TEMPORAL_ENDPOINT NOT SET")
        print("\nAdd to your .env file or environment:")
        print("\n  TEMPORAL_ENDPOINT=localhost:7233")
        print("  TEMPORAL_NAMESPACE=default")
        return False

    if settings.commit_mode != COMMIT_MODE_TEMPORAL:
        print(f"\n  Note: commits run in-process until TTB_COMMIT_MODE={COMMIT_MODE_TEMPORAL}")
    return True


def show_next_steps(task_queue: str) -> None:
    print("\nNEXT STEPS:")
    print("-" * 70)
    print("\n1. Start Worker:")
    print(f"   python -m workers.worker --queue {task_queue}")
    print("\n2. Start the API with TTB_COMMIT_MODE=temporal:")
    print("   python -m api.server")
    print("\n3. Commit an onboarding draft:")
    print("   POST /onboarding/commit")
    print("   The workflow id is ttb-onboarding-<commitId>")
    print("\n" + "=" * 70 + "\n")


if __name__ == "__main__":
    is_ready = check_temporal_config()
    show_next_steps(get_settings().task_queue)

    sys.exit(0 if is_ready else 1)
