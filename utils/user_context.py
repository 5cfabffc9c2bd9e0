"""The user a request is acting for, carried in a contextvar.

Only a user the identity provider has confirmed is ever bound here. The
Postgres client reads it to set the row level security claim on every
connection checkout, so direct order writes see only the caller's rows.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def peek_current_user_id() -> UUID | None:
    """Bound user ID, or None outside a user-scoped block."""
    return _current_user_id.get()


def clear_current_user_id() -> None:
    """Drop whatever is bound. Middleware calls this after every request."""
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Bind `user_id` for the duration of the block, restoring the outer value after.

    Example:
        with user_context(command.user_id):
            db.execute_returning(INSERT_ORDER, params)
    """
    token = _current_user_id.set(user_id)
    try:
        yield user_id
    finally:
        _current_user_id.reset(token)
