"""
Jetons anti-CSRF.

Le client récupère un jeton via GET /api/csrf puis le renvoie dans l'en-tête
X-CSRF-Token (ou CSRF-Token) sur chaque requête qui modifie un état.
Le jeton est lié à l'utilisateur authentifié au moment de l'émission et reste
réutilisable jusqu'à son expiration (30 minutes).
"""

import hmac
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.token import CsrfToken
from app.utils import hash_token, utcnow

logger = logging.getLogger(__name__)

CSRF_TOKEN_RE = re.compile(r"^[a-f0-9]{64}$")


def generate_csrf_token(db: Session, user_id: Optional[uuid.UUID] = None) -> tuple[str, datetime]:
    """Retourne (jeton en clair, expiration). Seule l'empreinte est stockée."""
    token = secrets.token_hex(32)
    expires_at = utcnow() + timedelta(minutes=settings.CSRF_TOKEN_EXPIRE_MINUTES)
    db.add(CsrfToken(token_hash=hash_token(token), user_id=user_id, expires_at=expires_at))
    db.commit()
    return token, expires_at


def validate_csrf_with_session(db: Session, token: Optional[str], user_id: uuid.UUID) -> bool:
    """
    Vrai si le jeton est bien formé, connu, non expiré et émis pour cet utilisateur.
    Comparaison des empreintes en temps constant.
    """
    if not token or not CSRF_TOKEN_RE.match(token):
        return False

    digest = hash_token(token)
    row = db.execute(select(CsrfToken).where(CsrfToken.token_hash == digest)).scalar()
    if row is None or not hmac.compare_digest(row.token_hash, digest):
        return False
    if row.expires_at <= utcnow():
        logger.info("Jeton CSRF expiré présenté par l'utilisateur %s", user_id)
        return False
    return row.user_id is not None and row.user_id == user_id


def purge_expired(db: Session) -> int:
    deleted = db.execute(
        delete(CsrfToken)
        .where(CsrfToken.expires_at <= utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    return deleted
