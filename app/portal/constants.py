"""
Central constants for the portal application.
"""
from __future__ import annotations

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = frozenset({ROLE_USER, ROLE_ADMIN})

NAME_MAX_LENGTH = 20
PASSWORD_MAX_LENGTH = 20

# Session payload keys. "authenticated" is only ever set together with "user_id".
SESSION_AUTHENTICATED = "authenticated"
SESSION_USER_ID = "user_id"
SESSION_USERNAME = "username"

# Members page decoration
MEMBER_NAMES = ("carl", "gary", "jebediah")

LOGIN_RATE_LIMIT = 5
LOGIN_RATE_WINDOW = 300  # seconds
