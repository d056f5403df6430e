"""Processing services."""
