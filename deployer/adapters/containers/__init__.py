"""Container adapters — Docker test containers."""
