"""API Package.

FastAPI server for TTB onboarding and reconciliation.
"""

from api.server import create_app

__all__ = [
    "create_app",
]
