"""Promotion of verified staging records into the canonical store."""
