"""
CoFlow application settings.

Extends the base settings with study-group specific configuration.
"""

from common.config import BaseAppSettings


class Settings(BaseAppSettings):
    """CoFlow-specific settings."""

    # ==========================================================================
    # Collections
    # ==========================================================================
    GROUPS_COLLECTION: str = "groups"
    USERS_COLLECTION: str = "users"

    # ==========================================================================
    # Membership Settings
    # ==========================================================================
    # When False, a schedule conflict that appeared between request and
    # approval is only logged; when True the approval is refused.
    RECHECK_CONFLICTS_ON_APPROVAL: bool = False

    # ==========================================================================
    # Query Settings
    # ==========================================================================
    # Upper bound on documents materialized by a single group query
    GROUP_QUERY_LIMIT: int = 500


settings = Settings()
