"""
Board subsystem.

Components:
- models.py: Task / Note / Subtask / Snapshot and the wire timestamp format
- identity.py: device identifier + conflict-free id generator
- persistence.py: SQLite-backed key-value persistence
- store.py: in-memory collections, write-through to persistence
- reconcile.py: last-writer-wins merge + import guard
- sweeper.py: hard-purge of old tombstones
- integrity.py: duplicate / orphan checks
- interchange.py: backup export/import documents
"""
