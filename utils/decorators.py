from __future__ import annotations
from functools import wraps
from typing import Callable

from flask import request, g, current_app

from authority.errors import InvalidToken


def get_authority():
    """The TokenAuthority built by the app factory for this app."""
    return current_app.extensions["token_authority"]


def client_ip() -> str:
    return request.remote_addr or "unknown"


def ip_principal() -> str:
    return f"ip:{client_ip()}"


def rate_limited(route_class: str, principal: Callable[[], str] = ip_principal):
    """Admit the request through the rate limiter before the view runs.

    Rejections raise RateLimited, which the error handlers turn into a 429.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            get_authority().admit(principal(), route_class)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def token_required(subject_type: str | None = None):
    """Authentication gate for protected routes.

    Verifies the Bearer access token and exposes its claims as g.token_claims.
    With subject_type set, only tokens issued to that kind of subject pass.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer "):
                raise InvalidToken(InvalidToken.INVALID)
            token = auth.split(" ", 1)[1].strip()
            claims = get_authority().verify(token)
            if subject_type is not None and claims.subject_type != subject_type:
                raise InvalidToken(InvalidToken.INVALID)
            g.token_claims = claims
            return fn(*args, **kwargs)

        return wrapper

    return decorator

