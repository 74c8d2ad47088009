"""Local document store used as a search backend."""
