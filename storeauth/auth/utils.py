"""Utility functions for authentication, including cookie management."""

from fastapi import Response

TOKEN_COOKIE_PATH = "/"


def set_token_cookie(
    response: Response,
    token: str,
    cookie_name: str,
    max_age: int,
    secure: bool = True,
) -> None:
    """Set the access token as an httpOnly cookie.

    The cookie is configured with:
    - httpOnly: Prevents JavaScript access (XSS protection)
    - secure: Only sent over HTTPS (callers relax this in debug mode)
    - samesite: 'lax' for CSRF protection while allowing same-site navigation

    Args:
        response: FastAPI Response object to set the cookie on.
        token: The JWT access token to store in the cookie.
        cookie_name: Cookie name the authentication pipeline falls back to.
        max_age: Cookie lifetime in seconds (the token lifetime).
        secure: Whether to mark the cookie Secure.
    """
    response.set_cookie(
        key=cookie_name,
        value=token,
        httponly=True,
        secure=secure,
        samesite="lax",
        path=TOKEN_COOKIE_PATH,
        max_age=max_age,
    )


def clear_token_cookie(response: Response, cookie_name: str, secure: bool = True) -> None:
    """Clear the access token cookie on logout."""
    response.delete_cookie(
        key=cookie_name,
        path=TOKEN_COOKIE_PATH,
        httponly=True,
        secure=secure,
        samesite="lax",
    )
