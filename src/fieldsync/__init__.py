"""fieldsync - Offline-first record sync, local store and backups."""

__version__ = "0.1.0"
