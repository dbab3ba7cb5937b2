"""Sync event logging package."""

from messmate.audit.logger import SyncEventLogger, configure_logging

__all__ = ["SyncEventLogger", "configure_logging"]
