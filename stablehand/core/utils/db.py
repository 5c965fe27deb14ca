# stablehand/core/utils/db.py
"""Classification of database errors seen by the periodic loops."""

from __future__ import annotations

import psycopg
from sqlalchemy.exc import DBAPIError, OperationalError

# Exceptions that indicate the server or the connection went away, not that
# the statement was wrong. A later tick may succeed without any change.
_TRANSIENT_DRIVER_ERRORS: tuple[type[BaseException], ...] = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
)


def is_transient_db_error(exc: BaseException) -> bool:
    """True when a later retry of the same operation may succeed.

    SQLAlchemy wraps driver errors in ``DBAPIError`` (keeping the driver
    exception on ``.orig``); both the wrapper and the original are inspected.
    """
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        return isinstance(exc.orig, _TRANSIENT_DRIVER_ERRORS)
    return isinstance(exc, _TRANSIENT_DRIVER_ERRORS)
