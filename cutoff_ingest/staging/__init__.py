"""Staging store for import sessions, raw rows, and processed records."""
