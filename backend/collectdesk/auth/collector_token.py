"""Collector token utilities (UUID4-based tokens).

Collector tokens are random UUID4 strings issued when an admin creates a
collector. They are sent in the ``X-Collector-Token`` header.
"""

import uuid


def generate_collector_token() -> str:
    """Generate a new UUID4 collector token."""
    return str(uuid.uuid4())


def validate_collector_token(token: str) -> bool:
    """Validate that a string is a well-formed, canonical UUID4.

    Args:
        token: The candidate token string.

    Returns:
        True if the token is a valid UUID4, False otherwise.
    """
    try:
        parsed = uuid.UUID(token, version=4)
    except (ValueError, AttributeError, TypeError):
        return False
    # Rejects non-canonical forms (uppercase, braces, missing dashes).
    return str(parsed) == token
