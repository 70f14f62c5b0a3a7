"""Social content tracking service."""
