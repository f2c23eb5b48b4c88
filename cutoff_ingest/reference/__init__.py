"""Canonical reference data: seed loading, variations, immutable snapshots."""
