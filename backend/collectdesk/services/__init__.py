"""Business logic services sitting between route handlers and the DAL."""
