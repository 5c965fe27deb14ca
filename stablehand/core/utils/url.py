# stablehand/core/utils/url.py
"""URL helpers for safe logging and dialect detection."""

from __future__ import annotations

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


def mask_database_url(url: str) -> str:
    """Mask the password in a database URL for secure logging.

    Falls back to string manipulation when SQLAlchemy cannot parse the URL.
    """
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        if '@' not in url:
            return url
        pre, post = url.split('@', 1)
        scheme_user = pre.rsplit(':', 1)[0]
        return f'{scheme_user}:***@{post}'


def url_scheme(url: str) -> str:
    """Return the SQLAlchemy scheme of a URL (``dialect+driver``), or ``''``."""
    if '://' not in url:
        return ''
    return url.split('://', 1)[0]


def is_sqlite_url(url: str) -> bool:
    return url_scheme(url).split('+', 1)[0] == 'sqlite'
