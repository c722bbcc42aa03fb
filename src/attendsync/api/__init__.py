"""HTTP surface for the sync engine."""

from .router import router

__all__ = ["router"]
