# embedq/core/utils/url.py
"""Helpers for logging URLs and credentials without leaking secrets."""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit


def mask_database_url(url: str) -> str:
    """Replace the password of a database URL with ``***``.

    URLs without a password are returned unchanged. Unparseable URLs fall
    back to masking everything between the last ``:`` before ``@`` and ``@``.
    """
    try:
        parts = urlsplit(url)
        if not parts.password:
            return url
        netloc = parts.netloc.replace(f':{parts.password}@', ':***@', 1)
        return urlunsplit(parts._replace(netloc=netloc))
    except ValueError:
        if '@' not in url:
            return url
        credentials, host = url.rsplit('@', 1)
        return f"{credentials.rsplit(':', 1)[0]}:***@{host}"


def redact_secret(secret: str | None, *, keep: int = 4) -> str:
    """Show only the last ``keep`` characters of an API key."""
    if not secret:
        return '<unset>'
    if len(secret) <= keep:
        return '***'
    return f'***{secret[-keep:]}'
