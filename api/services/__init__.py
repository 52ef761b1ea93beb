"""API Services Package."""

from api.services.container import Services, get_services

__all__ = [
    "Services",
    "get_services",
]
