"""Request-level middleware."""
