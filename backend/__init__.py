"""TaskFlow API backend."""
