"""
Cookies d'authentification.

auth-token (15 min), refresh-token (7 jours), trusted-device (30 jours) :
HttpOnly, SameSite=Strict, path=/, Secure en production.
"""

from fastapi import Response

from app.config import settings

ACCESS_COOKIE = "auth-token"
REFRESH_COOKIE = "refresh-token"
TRUSTED_DEVICE_COOKIE = "trusted-device"


def _set(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        path="/",
    )


def _clear(response: Response, name: str) -> None:
    _set(response, name, "", 0)


def set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    _set(response, ACCESS_COOKIE, access_token, settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60)
    _set(response, REFRESH_COOKIE, refresh_token, settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60)


def clear_auth_cookies(response: Response) -> None:
    _clear(response, ACCESS_COOKIE)
    _clear(response, REFRESH_COOKIE)


def set_trusted_device_cookie(response: Response, device_token: str) -> None:
    _set(response, TRUSTED_DEVICE_COOKIE, device_token, settings.TRUSTED_DEVICE_EXPIRE_DAYS * 24 * 60 * 60)


def clear_trusted_device_cookie(response: Response) -> None:
    _clear(response, TRUSTED_DEVICE_COOKIE)
