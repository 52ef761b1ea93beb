"""Core module - data contracts, storage, audit, observability and config.

Everything the reconciliation engine, the onboarding wizard and the
commit protocol share lives here.
"""

__version__ = "1.0.0"
