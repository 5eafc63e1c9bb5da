"""
Hachage et vérification des mots de passe (bcrypt).

bcrypt ne prend en compte que les 72 premiers octets : un mot de passe plus long
est refusé par les règles de robustesse, jamais tronqué.
"""

import logging
import re
from typing import List

import bcrypt

from app.config import settings
from app.exceptions import PasswordHashError, ValidationFailed

logger = logging.getLogger(__name__)

BCRYPT_MAX_BYTES = 72
TOO_LONG_MESSAGE = "Password must be at most 72 bytes"

_WEAK_PATTERNS = [
    re.compile(r"(.)\1{3,}"),  # même caractère répété 4 fois ou plus
    re.compile(r"^(123456|password|qwerty|abc123|111111|000000)$", re.IGNORECASE),
    re.compile(r"^[a-zA-Z]+$"),
    re.compile(r"^\d+$"),
]


def _encode(password: str) -> bytes:
    return password.encode("utf-8")


def hash_password(password: str) -> str:
    """Retourne l'empreinte bcrypt (sel inclus) du mot de passe."""
    encoded = _encode(password)
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValidationFailed(TOO_LONG_MESSAGE)
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(encoded, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Compare un mot de passe à son empreinte bcrypt (comparaison à temps constant).
    Retourne False si le mot de passe est faux ou dépasse 72 octets.
    Lève PasswordHashError si l'empreinte stockée est malformée.
    """
    encoded = _encode(password)
    if len(encoded) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    except ValueError as exc:
        logger.error("Empreinte de mot de passe illisible en base : %s", exc)
        raise PasswordHashError() from exc


def validate_password_strength(password: str) -> List[str]:
    """
    Règles de robustesse appliquées à l'inscription, au changement et à la
    réinitialisation du mot de passe. Retourne la liste des règles violées.
    """
    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if len(_encode(password)) > BCRYPT_MAX_BYTES:
        errors.append(TOO_LONG_MESSAGE)
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not re.search(r"[!@#$%^&*(),.?\":{}|<>]", password):
        errors.append("Password must contain at least one special character")
    if any(pattern.search(password) for pattern in _WEAK_PATTERNS):
        errors.append("Password is too weak or common")
    return errors
