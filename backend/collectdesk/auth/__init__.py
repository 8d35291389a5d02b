"""Authentication and authorization utilities."""

from collectdesk.auth.jwt import create_access_token, decode_token
from collectdesk.auth.collector_token import (
    generate_collector_token,
    validate_collector_token,
)
from collectdesk.auth.dependencies import (
    get_current_admin,
    get_current_collector,
    get_admin_or_collector,
    require_location_access,
)

__all__ = [
    "create_access_token",
    "decode_token",
    "generate_collector_token",
    "validate_collector_token",
    "get_current_admin",
    "get_current_collector",
    "get_admin_or_collector",
    "require_location_access",
]
