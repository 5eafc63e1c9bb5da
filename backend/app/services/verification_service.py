"""
Jetons de vérification d'email et de réinitialisation de mot de passe.

Flux :
  1. Générer un jeton opaque (64 caractères hexadécimaux), n'en stocker que l'empreinte
  2. Envoyer le lien par email (un échec SMTP est journalisé, jamais remonté)
  3. À la consommation : UPDATE conditionnel (used_at IS NULL, non expiré) puis
     application de l'effet (email vérifié / nouveau mot de passe) dans la même
     transaction. Un jeton consommé ne redevient jamais valide.

Les points d'entrée "forgot-password" et "resend-verification" ne révèlent jamais
si le compte existe : ces fonctions retournent silencieusement dans ce cas.
"""

import logging
import secrets
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import InvalidToken, ValidationFailed
from app.models.session import PendingTwoFactorSession
from app.models.token import EMAIL_VERIFICATION, PASSWORD_RESET, VerificationToken
from app.models.user import User
from app.services import email_service, token_service
from app.services.password_service import hash_password, validate_password_strength
from app.services.user_service import get_user_by_email
from app.utils import hash_token, utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 64 caractères hexadécimaux


def _issue_token(db: Session, user: User, purpose: str, lifetime: timedelta) -> str:
    raw = secrets.token_hex(TOKEN_BYTES)
    db.add(VerificationToken(
        token_hash=hash_token(raw),
        user_id=user.id,
        purpose=purpose,
        expires_at=utcnow() + lifetime,
    ))
    db.commit()
    return raw


def initiate_email_verification(db: Session, user: User) -> Optional[str]:
    """
    Émet un jeton de vérification et envoie le lien.
    Retourne le jeton en clair (None si l'adresse est déjà vérifiée).
    """
    if user.email_verified:
        return None

    token = _issue_token(
        db, user, EMAIL_VERIFICATION, timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)
    )
    link = f"{settings.BASE_URL}/auth/verify-email?token={token}"
    try:
        email_service.send_verification_email(user.email, link)
    except Exception as exc:
        # L'utilisateur peut redemander un email : l'échec ne bloque pas l'appelant
        logger.error("Échec d'envoi de l'email de vérification (utilisateur %s) : %s", user.id, exc)
    return token


def resend_verification(db: Session, email: str) -> None:
    """Renvoie un lien si le compte existe, est actif et n'est pas encore vérifié."""
    user = get_user_by_email(db, email)
    if user is None or not user.is_active or user.email_verified:
        logger.info("Renvoi de vérification ignoré (compte absent, inactif ou déjà vérifié)")
        return
    initiate_email_verification(db, user)


def initiate_password_reset(db: Session, email: str) -> Optional[str]:
    """
    Émet un jeton de réinitialisation si le compte existe et est actif.
    Retourne le jeton en clair, ou None (sans le signaler à l'appelant HTTP).
    """
    user = get_user_by_email(db, email)
    if user is None or not user.is_active:
        logger.info("Demande de réinitialisation pour un compte inconnu ou inactif")
        return None

    token = _issue_token(
        db, user, PASSWORD_RESET, timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    )
    link = f"{settings.BASE_URL}/auth/reset-password?token={token}"
    try:
        email_service.send_password_reset_email(user.email, link)
    except Exception as exc:
        logger.error("Échec d'envoi de l'email de réinitialisation (utilisateur %s) : %s", user.id, exc)
    return token


def _find_usable(db: Session, token: str, purpose: str) -> Optional[VerificationToken]:
    row = db.execute(
        select(VerificationToken).where(
            VerificationToken.token_hash == hash_token(token),
            VerificationToken.purpose == purpose,
        )
    ).scalar()
    if row is None or row.used_at is not None or row.expires_at <= utcnow():
        return None
    return row


def _consume(db: Session, token: str, purpose: str) -> uuid.UUID:
    """
    Marque le jeton comme utilisé et retourne l'utilisateur associé.
    L'UPDATE conditionnel garantit qu'une seule consommation concurrente réussit.
    Ne commit pas : l'effet métier doit rejoindre la même transaction.
    """
    row = _find_usable(db, token, purpose)
    if row is None:
        raise InvalidToken()

    now = utcnow()
    consumed = db.execute(
        update(VerificationToken)
        .where(
            VerificationToken.token_hash == row.token_hash,
            VerificationToken.used_at.is_(None),
            VerificationToken.expires_at > now,
        )
        .values(used_at=now)
    ).rowcount
    if consumed != 1:
        db.rollback()
        raise InvalidToken()
    return row.user_id


def verify_email(db: Session, token: str) -> User:
    """Consomme un jeton de vérification et marque l'adresse comme vérifiée (tout ou rien)."""
    user_id = _consume(db, token, EMAIL_VERIFICATION)
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        db.rollback()
        raise InvalidToken()

    user.email_verified = True
    db.commit()
    logger.info("Adresse email vérifiée pour l'utilisateur %s", user.id)
    return user


def check_reset_token(db: Session, token: str) -> bool:
    """Indique si un jeton de réinitialisation est utilisable, sans le consommer."""
    return _find_usable(db, token, PASSWORD_RESET) is not None


def reset_password(db: Session, token: str, new_password: str) -> User:
    """
    Consomme un jeton de réinitialisation et remplace le mot de passe.
    Toutes les sessions existantes sont révoquées et le verrouillage levé.
    La robustesse est vérifiée avant consommation : un mot de passe refusé ne brûle pas le jeton.
    """
    errors = validate_password_strength(new_password)
    if errors:
        raise ValidationFailed("Password does not meet requirements", errors=errors)

    user_id = _consume(db, token, PASSWORD_RESET)
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        db.rollback()
        raise InvalidToken()

    user.password_hash = hash_password(new_password)
    user.failed_login_attempts = 0
    user.locked_until = None
    token_service.revoke_all_sessions(db, user.id)
    db.execute(delete(PendingTwoFactorSession).where(PendingTwoFactorSession.user_id == user.id))
    db.commit()
    logger.info("Mot de passe réinitialisé pour l'utilisateur %s", user.id)
    return user


def purge_expired(db: Session) -> int:
    """Supprime les jetons expirés ou déjà consommés (appelé par le scheduler)."""
    deleted = db.execute(
        delete(VerificationToken).where(
            or_(VerificationToken.expires_at <= utcnow(), VerificationToken.used_at.is_not(None))
        ).execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    return deleted
