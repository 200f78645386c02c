"""Client module - Local store, remote client, sync engine and backups."""
