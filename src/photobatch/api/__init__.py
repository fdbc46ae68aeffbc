"""HTTP control API consumed by the desktop UI."""
