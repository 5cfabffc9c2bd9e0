"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc
from utils.user_context import clear_current_user_id, peek_current_user_id, user_context
