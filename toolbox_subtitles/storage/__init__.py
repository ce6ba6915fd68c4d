"""Storage adapters for generated subtitle files."""
