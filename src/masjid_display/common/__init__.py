"""Shared infrastructure: config, credentials, logging, IPC."""
