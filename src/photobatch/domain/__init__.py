"""Domain models and built-in templates."""
