"""Drivers: concrete I/O used by adapters (subprocesses, HTTP)."""
