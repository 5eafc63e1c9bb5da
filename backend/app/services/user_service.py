"""
Service métier pour les comptes utilisateurs : lecture, création, profil,
changement de mot de passe et suppression de compte.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.exceptions import Conflict, NotFound, ValidationFailed
from app.models.session import AuthSession, PendingTwoFactorSession, TrustedDevice
from app.models.token import CsrfToken, VerificationToken
from app.models.user import User
from app.services import token_service
from app.services.password_service import hash_password, validate_password_strength, verify_password

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user(db: Session, user_id: uuid.UUID) -> Optional[User]:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Recherche par email normalisé (minuscules, sans espaces)."""
    return db.execute(
        select(User).where(User.email == normalize_email(email))
    ).scalar()


def create_user(db: Session, email: str, password: str, name: Optional[str] = None) -> User:
    """
    Crée un compte après contrôle d'unicité et de robustesse du mot de passe.
    Lève Conflict si l'email est déjà utilisé, ValidationFailed si le mot de passe est trop faible.
    """
    email = normalize_email(email)
    if get_user_by_email(db, email) is not None:
        raise Conflict("User with this email already exists")

    errors = validate_password_strength(password)
    if errors:
        raise ValidationFailed("Password does not meet requirements", errors=errors)

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name.strip() if name else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Compte créé : %s", user.id)
    return user


def update_profile(db: Session, user: User, email: Optional[str] = None, name: Optional[str] = None) -> User:
    """
    Met à jour l'email et/ou le nom.
    Un email déjà porté par un autre compte → Conflict.
    """
    if email is not None:
        email = normalize_email(email)
        existing = get_user_by_email(db, email)
        if existing is not None and existing.id != user.id:
            raise Conflict("Email already in use")
        user.email = email
    if name is not None:
        user.name = name.strip() or None

    db.commit()
    db.refresh(user)
    return user


def get_notification_settings(user: User) -> dict:
    return {
        "email_notifications": user.email_notifications,
        "share_notifications": user.share_notifications,
        "security_alerts": user.security_alerts,
    }


def update_notification_settings(
    db: Session,
    user: User,
    email_notifications: bool,
    share_notifications: bool,
    security_alerts: bool,
) -> dict:
    """Remplace les trois préférences de notification et retourne l'état enregistré."""
    user.email_notifications = email_notifications
    user.share_notifications = share_notifications
    user.security_alerts = security_alerts
    db.commit()
    db.refresh(user)
    logger.info("Préférences de notification mises à jour pour l'utilisateur %s", user.id)
    return get_notification_settings(user)


def change_password(
    db: Session,
    user: User,
    current_password: str,
    new_password: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> token_service.TokenPair:
    """
    Change le mot de passe après re-vérification du mot de passe actuel.
    Toutes les sessions existantes sont révoquées ; une nouvelle paire de jetons
    est émise pour la session courante.
    """
    if not verify_password(current_password, user.password_hash):
        raise ValidationFailed("Current password is incorrect")

    errors = validate_password_strength(new_password)
    if errors:
        raise ValidationFailed("Password does not meet requirements", errors=errors)

    user.password_hash = hash_password(new_password)
    revoked = token_service.revoke_all_sessions(db, user.id)
    pair = token_service.issue_token_pair(db, user, ip_address, user_agent)
    db.commit()
    logger.info("Mot de passe changé pour l'utilisateur %s (%d sessions révoquées)", user.id, revoked)
    return pair


def delete_account(db: Session, user_id: uuid.UUID) -> None:
    """
    Supprime le compte et toutes les données d'authentification rattachées.
    Les fichiers, dossiers et partages sont supprimés par cascade de clés étrangères
    côté stockage.
    """
    user = get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")

    for model in (AuthSession, PendingTwoFactorSession, TrustedDevice, CsrfToken, VerificationToken):
        db.execute(
            delete(model).where(model.user_id == user_id).execution_options(synchronize_session=False)
        )
    db.delete(user)
    db.commit()
    logger.info("Compte supprimé : %s", user_id)
