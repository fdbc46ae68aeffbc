"""Remote image transformation providers."""
