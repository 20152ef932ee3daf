"""Domain layer - pure value objects, status vocabularies and rules (no I/O)."""
