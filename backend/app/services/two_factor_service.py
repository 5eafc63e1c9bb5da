"""
Cycle de vie de la double authentification d'un utilisateur.

    désactivée → setup en cours (secret stocké, enabled=False)
    setup en cours → activée (premier code valide)
    setup en cours / activée → désactivée (annulation ou désactivation avec mot de passe)
"""

import logging
from dataclasses import dataclass
from typing import List

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.exceptions import Conflict, InvalidCredentials, InvalidTwoFactorCode, ValidationFailed
from app.models.session import PendingTwoFactorSession, TrustedDevice
from app.models.user import User
from app.services import totp_service
from app.services.password_service import verify_password
from app.services.session_service import record_totp_step

logger = logging.getLogger(__name__)


@dataclass
class TwoFactorSetup:
    secret: str
    otpauth_uri: str
    qr_code_data_url: str
    backup_codes: List[str]


def begin_setup(db: Session, user: User) -> TwoFactorSetup:
    """
    Génère un nouveau secret et des codes de secours, sans activer la 2FA.
    Relancer le setup remplace le secret en cours.
    Les codes de secours ne sont retournés qu'ici, en clair.
    """
    if user.two_factor_enabled:
        raise Conflict("Two-factor authentication is already enabled")

    setup = totp_service.generate_secret(user.email)
    backup_codes = totp_service.generate_backup_codes()

    user.two_factor_secret = setup.secret
    user.two_factor_backup_codes = [totp_service.hash_backup_code(c) for c in backup_codes]
    user.totp_last_used_step = None
    db.commit()
    logger.info("Setup 2FA démarré pour l'utilisateur %s", user.id)

    return TwoFactorSetup(
        secret=setup.secret,
        otpauth_uri=setup.otpauth_uri,
        qr_code_data_url=setup.qr_code_data_url,
        backup_codes=backup_codes,
    )


def confirm_setup(db: Session, user: User, code: str) -> None:
    """Active la 2FA si le code correspond au secret en cours de setup."""
    if user.two_factor_enabled:
        raise Conflict("Two-factor authentication is already enabled")
    if not user.two_factor_secret:
        raise ValidationFailed("No 2FA setup in progress. Please start setup first.")

    result = totp_service.verify_token(code, user.two_factor_secret, user.totp_last_used_step)
    if not result.valid or not record_totp_step(db, user, result.step_used):
        db.rollback()
        raise InvalidTwoFactorCode()

    user.two_factor_enabled = True
    db.commit()
    logger.info("2FA activée pour l'utilisateur %s", user.id)


def disable(db: Session, user: User, password: str) -> None:
    """
    Désactive la 2FA après re-vérification du mot de passe.
    Les appareils de confiance et les sessions 2FA en attente du compte sont supprimés.
    """
    if not verify_password(password, user.password_hash):
        raise InvalidCredentials("Invalid password")

    user.two_factor_enabled = False
    user.two_factor_secret = None
    user.two_factor_backup_codes = None
    user.totp_last_used_step = None
    for model in (TrustedDevice, PendingTwoFactorSession):
        db.execute(
            delete(model).where(model.user_id == user.id).execution_options(synchronize_session=False)
        )
    db.commit()
    logger.info("2FA désactivée pour l'utilisateur %s", user.id)
