"""Import session orchestration."""
