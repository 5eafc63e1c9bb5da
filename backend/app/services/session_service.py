"""
Machine à états de connexion : inscription, login, complétion 2FA, logout.

Idle → mot de passe vérifié → (2FA requise : session 2FA en attente | sinon : authentifié)
Session 2FA en attente → complétée (authentifié) | expirée (retour à Idle)

Les sessions 2FA en attente sont en base (pending_two_factor_sessions) : une complétion
peut arriver sur un autre worker que celui qui a traité le login.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import (
    AccountDisabled,
    AccountLocked,
    InvalidCredentials,
    InvalidTwoFactorCode,
    SessionExpired,
    ValidationFailed,
)
from app.models.session import AuthSession, PendingTwoFactorSession, TrustedDevice
from app.models.user import User
from app.services import token_service, totp_service, user_service, verification_service
from app.services.password_service import verify_password
from app.services.token_service import TokenPair
from app.utils import hash_token, utcnow

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: User
    tokens: Optional[TokenPair] = None
    temp_session: Optional[str] = None
    trusted_device_token: Optional[str] = None

    @property
    def requires_2fa(self) -> bool:
        return self.temp_session is not None


@dataclass
class TwoFactorResult:
    user: User
    tokens: TokenPair
    remaining_backup_codes: Optional[int] = None
    trusted_device_token: Optional[str] = None


# ============================================================
# Inscription
# ============================================================

def register(db: Session, email: str, password: str, name: Optional[str] = None) -> User:
    """
    Crée le compte puis envoie le lien de vérification d'adresse.
    Un échec d'envoi est journalisé : le compte reste créé.
    """
    user = user_service.create_user(db, email, password, name)
    try:
        verification_service.initiate_email_verification(db, user)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Impossible d'émettre le jeton de vérification pour %s : %s", user.id, exc)
    return user


# ============================================================
# Login
# ============================================================

def _register_failure(db: Session, user: User) -> None:
    """Incrémente le compteur d'échecs ; au seuil, verrouille le compte."""
    user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
    if user.failed_login_attempts >= settings.MAX_FAILED_LOGINS:
        user.locked_until = utcnow() + timedelta(minutes=settings.LOCKOUT_MINUTES)
        logger.warning(
            "Compte %s verrouillé après %d échecs de connexion", user.id, user.failed_login_attempts
        )
    db.commit()


def _issue_trusted_device(db: Session, user: User) -> str:
    raw = secrets.token_urlsafe(32)
    db.add(TrustedDevice(
        token_hash=hash_token(raw),
        user_id=user.id,
        expires_at=utcnow() + timedelta(days=settings.TRUSTED_DEVICE_EXPIRE_DAYS),
    ))
    return raw


def _consume_trusted_device(db: Session, user: User, device_token: Optional[str]) -> bool:
    """
    Vrai si le cookie trusted-device désigne un appareil non expiré de CE compte.
    L'entrée est supprimée : l'appelant émet un nouveau jeton (rotation).
    """
    if not device_token:
        return False
    consumed = db.execute(
        delete(TrustedDevice)
        .where(
            TrustedDevice.token_hash == hash_token(device_token),
            TrustedDevice.user_id == user.id,
            TrustedDevice.expires_at > utcnow(),
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    return consumed == 1


def _create_pending_session(db: Session, user: User) -> str:
    """Nouvelle session 2FA en attente ; remplace les précédentes du même utilisateur."""
    db.execute(
        delete(PendingTwoFactorSession)
        .where(PendingTwoFactorSession.user_id == user.id)
        .execution_options(synchronize_session=False)
    )
    session_id = secrets.token_urlsafe(32)
    db.add(PendingTwoFactorSession(
        id=session_id,
        user_id=user.id,
        attempts=0,
        expires_at=utcnow() + timedelta(minutes=settings.PENDING_2FA_EXPIRE_MINUTES),
    ))
    return session_id


def login(
    db: Session,
    email: str,
    password: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    device_token: Optional[str] = None,
) -> LoginResult:
    """
    Vérifie les identifiants et ouvre une session.

    Ordre des contrôles : compte inconnu (401) → compte désactivé (401) →
    verrouillage (423, avant toute vérification du mot de passe) → mot de passe (401).
    Le rate limiting et le contrôle d'origine sont appliqués en amont par le routeur.
    """
    user = user_service.get_user_by_email(db, email)
    if user is None:
        raise InvalidCredentials()
    if not user.is_active:
        raise AccountDisabled()

    now = utcnow()
    if user.locked_until is not None:
        if user.locked_until > now:
            raise AccountLocked()
        # Verrouillage écoulé : on repart de zéro
        user.locked_until = None
        user.failed_login_attempts = 0

    if not verify_password(password, user.password_hash):
        _register_failure(db, user)
        raise InvalidCredentials()

    user.failed_login_attempts = 0
    user.locked_until = None

    if user.two_factor_enabled:
        if _consume_trusted_device(db, user, device_token):
            new_device_token = _issue_trusted_device(db, user)
            tokens = token_service.issue_token_pair(db, user, ip_address, user_agent)
            user.last_login = now
            db.commit()
            logger.info("Connexion depuis un appareil de confiance : %s", user.id)
            return LoginResult(user=user, tokens=tokens, trusted_device_token=new_device_token)

        temp_session = _create_pending_session(db, user)
        db.commit()
        logger.info("Mot de passe vérifié, 2FA requise pour %s", user.id)
        return LoginResult(user=user, temp_session=temp_session)

    tokens = token_service.issue_token_pair(db, user, ip_address, user_agent)
    user.last_login = now
    db.commit()
    logger.info("Connexion réussie : %s", user.id)
    return LoginResult(user=user, tokens=tokens)


# ============================================================
# Complétion 2FA
# ============================================================

def _discard_pending(db: Session, session_id: str) -> None:
    db.execute(
        delete(PendingTwoFactorSession)
        .where(PendingTwoFactorSession.id == session_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _record_failed_attempt(db: Session, session_id: str) -> None:
    """Incrément atomique ; au plafond, la session en attente est détruite."""
    db.execute(
        update(PendingTwoFactorSession)
        .where(PendingTwoFactorSession.id == session_id)
        .values(attempts=PendingTwoFactorSession.attempts + 1)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        delete(PendingTwoFactorSession)
        .where(
            PendingTwoFactorSession.id == session_id,
            PendingTwoFactorSession.attempts >= settings.PENDING_2FA_MAX_ATTEMPTS,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


def record_totp_step(db: Session, user: User, step: int) -> bool:
    """
    Enregistre le pas TOTP accepté.
    UPDATE conditionnel : si un autre appel a déjà consommé ce pas (ou un plus récent),
    rowcount vaut 0 et le code doit être refusé.
    """
    updated = db.execute(
        update(User)
        .where(
            User.id == user.id,
            or_(User.totp_last_used_step.is_(None), User.totp_last_used_step < step),
        )
        .values(totp_last_used_step=step)
        .execution_options(synchronize_session=False)
    ).rowcount
    if updated == 1:
        user.totp_last_used_step = step
    return updated == 1


def complete_two_factor(
    db: Session,
    temp_session: str,
    code: Optional[str] = None,
    backup_code: Optional[str] = None,
    remember_device: bool = False,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> TwoFactorResult:
    """
    Finalise un login en attente de 2FA avec un code TOTP ou un code de secours.

    - session absente, expirée ou épuisée → SessionExpired (le client recommence le login)
    - code invalide → InvalidTwoFactorCode, la tentative est comptée
    - succès → la session en attente est supprimée (usage unique) et une paire de jetons émise
    """
    if not code and not backup_code:
        raise ValidationFailed("A verification code or backup code is required")

    pending = db.get(PendingTwoFactorSession, temp_session)
    if pending is None:
        raise SessionExpired()
    if pending.expires_at <= utcnow() or pending.attempts >= settings.PENDING_2FA_MAX_ATTEMPTS:
        _discard_pending(db, temp_session)
        raise SessionExpired()

    user_id = pending.user_id
    user = db.get(User, user_id)
    if user is None or not user.is_active or not user.two_factor_enabled or not user.two_factor_secret:
        _discard_pending(db, temp_session)
        raise SessionExpired()

    remaining_backup_codes = None
    if code:
        result = totp_service.verify_token(code, user.two_factor_secret, user.totp_last_used_step)
        valid = result.valid and record_totp_step(db, user, result.step_used)
    else:
        result = totp_service.verify_backup_code(backup_code, user.two_factor_backup_codes)
        valid = result.valid
        if valid:
            user.two_factor_backup_codes = result.remaining_codes
            remaining_backup_codes = len(result.remaining_codes)

    if not valid:
        db.rollback()
        _record_failed_attempt(db, temp_session)
        logger.warning("Code 2FA invalide pour l'utilisateur %s", user_id)
        raise InvalidTwoFactorCode()

    consumed = db.execute(
        delete(PendingTwoFactorSession)
        .where(PendingTwoFactorSession.id == temp_session)
        .execution_options(synchronize_session=False)
    ).rowcount
    if consumed != 1:
        # Une complétion concurrente a déjà utilisé cette session
        db.rollback()
        raise SessionExpired()

    tokens = token_service.issue_token_pair(db, user, ip_address, user_agent)
    device_token = _issue_trusted_device(db, user) if remember_device else None
    user.last_login = utcnow()
    db.commit()
    logger.info("2FA complétée pour l'utilisateur %s", user.id)
    return TwoFactorResult(
        user=user,
        tokens=tokens,
        remaining_backup_codes=remaining_backup_codes,
        trusted_device_token=device_token,
    )


# ============================================================
# Logout et maintenance
# ============================================================

def logout(db: Session, refresh_token: Optional[str]) -> None:
    """
    Révoque le refresh token, au mieux.
    Un échec de révocation n'empêche pas la déconnexion : le routeur efface les cookies.
    """
    if not refresh_token:
        return
    try:
        if not token_service.revoke_refresh_token(db, refresh_token):
            logger.info("Logout : refresh token illisible ou déjà révoqué")
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Logout : échec de révocation du refresh token : %s", exc)


def get_authenticated_user(db: Session, access_token: Optional[str]) -> Optional[User]:
    """Utilisateur actif porté par un access token valide, sinon None."""
    result = token_service.decode_token(access_token, token_service.ACCESS)
    if not result.valid:
        return None
    user = user_service.get_user(db, result.user_id)
    if user is None or not user.is_active:
        return None
    return user


def purge_expired(db: Session) -> int:
    """Supprime sessions expirées ou révoquées, sessions 2FA expirées et appareils expirés."""
    now = utcnow()
    deleted = 0
    for statement in (
        delete(AuthSession).where(or_(AuthSession.expires_at <= now, AuthSession.revoked_at.is_not(None))),
        delete(PendingTwoFactorSession).where(PendingTwoFactorSession.expires_at <= now),
        delete(TrustedDevice).where(TrustedDevice.expires_at <= now),
    ):
        deleted += db.execute(statement.execution_options(synchronize_session=False)).rowcount
    db.commit()
    return deleted
