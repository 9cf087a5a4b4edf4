"""
VidTube — core/cookies.py
─────────────────────────────────────────────────────────────────
Token cookies. Shared by the session dependency (security.py) and
the error handlers (errors.py): a pair rotated by get_session is
remembered on request.state so an error response still carries it.
─────────────────────────────────────────────────────────────────
"""

from fastapi import Request, Response

ACCESS_COOKIE  = "accessToken"
REFRESH_COOKIE = "refreshToken"

# Same attributes on set and clear
COOKIE_OPTIONS = {
    "httponly": True,
    "secure":   True,
    "samesite": "lax",
}


def set_token_cookies(response: Response, pair) -> None:
    response.set_cookie(ACCESS_COOKIE, pair.access_token, **COOKIE_OPTIONS)
    response.set_cookie(REFRESH_COOKIE, pair.refresh_token, **COOKIE_OPTIONS)


def clear_token_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, **COOKIE_OPTIONS)
    response.delete_cookie(REFRESH_COOKIE, **COOKIE_OPTIONS)


def remember_rotation(request: Request, pair) -> None:
    request.state.rotated_pair = pair


def replay_rotation(request: Request, response: Response) -> Response:
    """Copy a pair rotated earlier in this request onto `response`."""
    pair = getattr(request.state, "rotated_pair", None)
    if pair is not None:
        set_token_cookies(response, pair)
    return response
