"""API Routes Package."""

from api.routes import health, onboarding, ttb

__all__ = [
    "health",
    "onboarding",
    "ttb",
]
