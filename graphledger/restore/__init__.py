"""Entity and timestamp restore over the audit log."""

from .engine import RestoreEngine

__all__ = ["RestoreEngine"]
