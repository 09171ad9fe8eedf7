# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets (KANBAN_SYNC_TOKEN). Use .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "KANBAN_APP_NAME": "App display name, also written into exports (default: Kanban Todo Board).",
    "KANBAN_LOG_LEVEL": "Console logging level (default: INFO). The file log is always DEBUG.",
    # Connectors
    "KANBAN_CONSOLE_ENABLED": "Run the interactive console (true/false, default: true).",
    # Paths (gitignored)
    "KANBAN_DATA_DIR": "Local data directory: database, logs, exports (default: .local/kanban).",
    "KANBAN_DB_PATH": "SQLite key-value store path (default: <data_dir>/board.sqlite3).",
    "KANBAN_DEVICE_ID": "Stable device identifier; generated and persisted when unset.",
    # Cloud sync
    "KANBAN_SYNC_PROVIDER": "none | folder | http (default: none = local only).",
    "KANBAN_SYNC_FOLDER": "Folder provider: directory synced by the OS (iCloud Drive, Dropbox, ...).",
    "KANBAN_SYNC_URL": "HTTP provider: base URL of the key-value service.",
    "KANBAN_SYNC_TOKEN": "HTTP provider: bearer token (optional).",
    "KANBAN_SYNC_KEY": "Record key / file stem of the shared snapshot (default: kanban-data).",
    "KANBAN_HTTP_TIMEOUT_SECONDS": "HTTP provider request timeout (default: 10).",
    # Sync tuning
    "KANBAN_POLL_INTERVAL_SECONDS": "Periodic pull interval (default: 20, minimum 1).",
    "KANBAN_STARTUP_TIMEOUT_SECONDS": "How long startup waits for the first pull (default: 8).",
    "KANBAN_DEBOUNCE_SECONDS": "Imports are skipped this long after a local edit (default: 10).",
    "KANBAN_RETRY_ATTEMPTS": "Provider attempts per load/save (default: 3).",
    "KANBAN_RETRY_DELAY_SECONDS": "Delay between attempts; saves back off exponentially (default: 2).",
    # Retention
    "KANBAN_RETENTION_DAYS": "Deleted items are purged after this many days (default: 30).",
    "KANBAN_SWEEP_INTERVAL_HOURS": "How often the retention sweep runs (default: 24).",
}
