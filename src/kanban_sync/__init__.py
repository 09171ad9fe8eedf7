"""
kanban-sync: offline-first kanban board with last-writer-wins cloud sync.

Subpackages:
- board: data model, local store, reconciliation, retention, integrity, backups
- sync: cloud providers, retry helper, sync orchestrator
- core: ports (Protocols) and the wired AppState
- cli / connectors: composition root, slash commands, console
"""

__version__ = "0.1.0"
