"""
Sync subsystem.

Components:
- providers.py: CloudSyncProvider implementations (folder, HTTP key-value)
- retry.py: bounded retry helper with injectable sleep
- orchestrator.py: when to pull/push; coalescing, polling, status
"""
