"""
Émission et vérification des jetons JWT (HS256, python-jose).

- Access token : 15 min, vérifié uniquement par signature + expiration (sans état).
- Refresh token : 7 jours, adossé à une ligne auth_sessions ; révoquer la ligne
  invalide le jeton même si sa signature et son expiration sont encore valides.

Les deux jetons d'une paire partagent le même identifiant de session (claim "sid").
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import Unauthenticated
from app.models.session import AuthSession
from app.models.user import User
from app.utils import utcnow

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class TokenVerification:
    valid: bool
    user_id: Optional[uuid.UUID] = None
    session_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    session_id: str


def _encode(user_id: uuid.UUID, session_id: str, token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "sid": session_id,
        "type": token_type,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
        "iss": settings.TOKEN_ISSUER,
        "aud": settings.TOKEN_AUDIENCE,
        "jti": secrets.token_urlsafe(16),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(user_id: uuid.UUID, session_id: str) -> str:
    return _encode(user_id, session_id, ACCESS, timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(user_id: uuid.UUID, session_id: str) -> str:
    return _encode(user_id, session_id, REFRESH, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def decode_token(token: Optional[str], expected_type: str) -> TokenVerification:
    """
    Vérifie signature, expiration, émetteur, audience et type du jeton.
    Échoue fermé : toute anomalie donne valid=False, jamais de confiance partielle.
    """
    if not token:
        return TokenVerification(valid=False, error="Missing token")
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.TOKEN_AUDIENCE,
            issuer=settings.TOKEN_ISSUER,
        )
    except JWTError as exc:
        return TokenVerification(valid=False, error=str(exc))

    if payload.get("type") != expected_type:
        return TokenVerification(valid=False, error="Invalid token type")
    try:
        user_id = uuid.UUID(payload["sub"])
        session_id = str(payload["sid"])
    except (KeyError, TypeError, ValueError):
        return TokenVerification(valid=False, error="Malformed token payload")

    return TokenVerification(valid=True, user_id=user_id, session_id=session_id)


def issue_token_pair(
    db: Session,
    user: User,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> TokenPair:
    """
    Crée une session (révocable) et la paire access/refresh associée.
    La session est ajoutée à la transaction courante : l'appelant commit.
    """
    session_id = secrets.token_urlsafe(24)
    db.add(AuthSession(
        id=session_id,
        user_id=user.id,
        expires_at=utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None,
    ))
    return TokenPair(
        access_token=create_access_token(user.id, session_id),
        refresh_token=create_refresh_token(user.id, session_id),
        session_id=session_id,
    )


def verify_refresh_token(db: Session, token: Optional[str]) -> TokenVerification:
    """Vérification complète d'un refresh token : JWT valide ET session non révoquée."""
    result = decode_token(token, REFRESH)
    if not result.valid:
        return result

    session = db.get(AuthSession, result.session_id)
    if session is None or session.user_id != result.user_id:
        return TokenVerification(valid=False, error="Unknown session")
    if session.revoked_at is not None:
        return TokenVerification(valid=False, error="Session revoked")
    if session.expires_at <= utcnow():
        return TokenVerification(valid=False, error="Session expired")
    return result


def rotate_refresh_token(
    db: Session,
    token: Optional[str],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> tuple[User, TokenPair]:
    """
    Échange un refresh token valide contre une nouvelle paire et révoque l'ancien.
    La révocation est conditionnelle (revoked_at IS NULL) : deux rotations
    concurrentes du même jeton ne peuvent pas réussir toutes les deux.
    """
    result = verify_refresh_token(db, token)
    if not result.valid:
        logger.info("Refresh refusé : %s", result.error)
        raise Unauthenticated("Invalid refresh token")

    user = db.get(User, result.user_id)
    if user is None or not user.is_active:
        raise Unauthenticated("Invalid refresh token")

    revoked = db.execute(
        update(AuthSession)
        .where(AuthSession.id == result.session_id, AuthSession.revoked_at.is_(None))
        .values(revoked_at=utcnow())
    ).rowcount
    if revoked != 1:
        db.rollback()
        logger.warning("Refresh token déjà utilisé pour l'utilisateur %s", user.id)
        raise Unauthenticated("Invalid refresh token")

    pair = issue_token_pair(db, user, ip_address, user_agent)
    db.commit()
    return user, pair


def revoke_refresh_token(db: Session, token: Optional[str]) -> bool:
    """
    Révoque la session portée par un refresh token (logout).
    Retourne False si le jeton est illisible ou déjà révoqué.
    """
    result = decode_token(token, REFRESH)
    if not result.valid:
        return False
    revoked = db.execute(
        update(AuthSession)
        .where(
            AuthSession.id == result.session_id,
            AuthSession.user_id == result.user_id,
            AuthSession.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
    ).rowcount
    db.commit()
    return revoked == 1


def revoke_all_sessions(db: Session, user_id: uuid.UUID) -> int:
    """Révoque toutes les sessions actives d'un utilisateur. L'appelant commit."""
    return db.execute(
        update(AuthSession)
        .where(AuthSession.user_id == user_id, AuthSession.revoked_at.is_(None))
        .values(revoked_at=utcnow())
    ).rowcount
