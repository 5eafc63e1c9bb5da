"""
Dépendances FastAPI partagées par les routers : identification du client,
contrôle d'origine, rate limiting, utilisateur courant et jeton CSRF.

FastAPI résout les dépendances avant de valider le corps de la requête :
un client bloqué par le rate limit ou l'origine reçoit 429/403 sans que
le corps ne soit lu.
"""

import logging
from typing import Callable, Optional
from urllib.parse import urlsplit

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.exceptions import CsrfFailed, InvalidOrigin, RateLimited, Unauthenticated
from app.models.user import User
from app.services import csrf_service, rate_limit_service, session_service
from app.services.cookies import ACCESS_COOKIE

logger = logging.getLogger(__name__)

CSRF_HEADERS = ("X-CSRF-Token", "CSRF-Token")


def client_ip(request: Request) -> str:
    """
    Adresse du client. X-Forwarded-For / X-Real-IP ne sont lus que si
    TRUST_PROXY_HEADERS est activé (sinon n'importe quel client pourrait
    changer de compteur de rate limit à chaque requête).
    """
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _origin_of(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def is_origin_allowed(request_origin: str, allowed_origins: list) -> bool:
    """Correspondance exacte, "*" ou motif "*.domaine" (sous-domaines)."""
    for allowed in allowed_origins:
        if allowed == "*" or allowed == request_origin:
            return True
        if allowed.startswith("*."):
            domain = allowed[2:]
            if request_origin.endswith("." + domain) or request_origin == domain:
                return True
    return False


def validate_origin(request: Request) -> None:
    """
    Refuse (403) une requête dont l'Origin, ou à défaut le Referer, n'est pas autorisé.
    Sans aucun des deux en-têtes, la requête est considérée same-origin.
    """
    origin = request.headers.get("origin")
    referer = request.headers.get("referer")
    if not origin and not referer:
        return

    request_origin = origin.rstrip("/") if origin else _origin_of(referer)
    if not is_origin_allowed(request_origin, settings.allowed_origins):
        logger.warning(
            "Origine refusée : %s (ip=%s, chemin=%s)", request_origin, client_ip(request), request.url.path
        )
        raise InvalidOrigin()


def rate_limit(action: str, limit_setting: str, message: Optional[str] = None) -> Callable:
    """
    Fabrique une dépendance de rate limiting pour une action.
    limit_setting désigne le couple (max, fenêtre en secondes) dans Settings,
    lu à chaque requête pour rester surchargeable en test.
    message remplace le texte générique de la réponse 429.
    """
    def dependency(request: Request, response: Response, db: Session = Depends(get_db)) -> None:
        max_attempts, window_seconds = getattr(settings, limit_setting)
        result = rate_limit_service.check_rate_limit(
            db, client_ip(request), action, max_attempts, window_seconds
        )
        if not result.allowed:
            raise RateLimited(reset_time=result.reset_time, limit=result.limit, message=message)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = result.reset_time.isoformat() + "Z"

    return dependency


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Utilisateur actif authentifié par le cookie auth-token, sinon 401."""
    user = session_service.get_authenticated_user(db, request.cookies.get(ACCESS_COOKIE))
    if user is None:
        raise Unauthenticated()
    return user


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    return session_service.get_authenticated_user(db, request.cookies.get(ACCESS_COOKIE))


def require_csrf(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    """Exige un jeton CSRF valide émis pour l'utilisateur courant (403 sinon)."""
    token = next((request.headers.get(h) for h in CSRF_HEADERS if request.headers.get(h)), None)
    if not csrf_service.validate_csrf_with_session(db, token, user.id):
        logger.warning("Jeton CSRF refusé pour l'utilisateur %s (ip=%s)", user.id, client_ip(request))
        raise CsrfFailed()
