"""Entity resolution of free-text college and program names."""
