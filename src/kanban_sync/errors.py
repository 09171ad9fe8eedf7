# src/kanban_sync/errors.py

"""
Exception types.

Only local persistence failures are meant to reach the caller of a store
mutation. Cloud/provider failures are converted to False/None results inside
the providers and logged; skipped imports are reported as results.
"""

from __future__ import annotations


class KanbanSyncError(Exception):
    """Base class for errors raised by this package."""


class PersistenceError(KanbanSyncError):
    """Local persistence failed; the mutation may not be saved."""


class ProviderError(KanbanSyncError):
    """A cloud provider primitive failed (never escapes the provider)."""


class InterchangeError(KanbanSyncError, ValueError):
    """An import document is not in any recognised format."""
