"""
Session cookie helpers.
"""

from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import Response

# Expires must be > 0; the epoch itself is treated as "no expiry" by clients
COOKIE_DELETE_EXPIRES = datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)


class CookieNotFound(LookupError):
    pass


def read_secure_cookie(request: Request, name: str, secure: bool) -> str:
    """Return the named cookie value or raise CookieNotFound.

    ``secure`` is accepted for symmetry with write_secure_cookie. Browsers
    already withhold Secure cookies from plain-HTTP requests, so there is
    nothing to enforce on read.
    """
    value = request.cookies.get(name)
    if value is None:
        raise CookieNotFound(f"http: named cookie not present: {name}")
    return value


def write_secure_cookie(response: Response, name: str, value: str, max_age: int, secure: bool) -> None:
    """Set a cookie whose Secure and HttpOnly flags both follow ``secure``."""
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        secure=secure,
        httponly=secure,
        samesite=None,
    )


def clear_cookie(response: Response, name: str) -> None:
    response.set_cookie(key=name, value="", expires=COOKIE_DELETE_EXPIRES, samesite=None)
