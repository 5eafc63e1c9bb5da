"""
Rate limiting à fenêtre fixe par couple (identifiant, action).

Les compteurs sont en base (rate_limit_entries) pour être partagés entre workers.
La fenêtre ne glisse pas : une rafale à cheval sur deux fenêtres peut admettre
jusqu'à 2 × max requêtes, compromis accepté pour la simplicité.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.rate_limit import RateLimitEntry
from app.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: datetime
    limit: int


def check_rate_limit(
    db: Session,
    identifier: str,
    action: str,
    max_attempts: int,
    window_seconds: int,
    now: Optional[datetime] = None,
) -> RateLimitResult:
    """
    Comptabilise une tentative et indique si elle est admise.

    - Pas d'entrée ou fenêtre expirée → nouvelle fenêtre, count = 1
    - count >= max → refus jusqu'à reset_time
    - sinon incrément conditionnel (count < max) pour ne jamais dépasser max
      sous concurrence
    """
    now = now or utcnow()
    window = timedelta(seconds=window_seconds)

    entry = db.execute(
        select(RateLimitEntry)
        .where(RateLimitEntry.identifier == identifier, RateLimitEntry.action == action)
        .with_for_update()
    ).scalar()

    if entry is None:
        try:
            db.add(RateLimitEntry(
                identifier=identifier,
                action=action,
                count=1,
                window_start=now,
                expires_at=now + window,
            ))
            db.commit()
        except IntegrityError:
            # Une requête concurrente a créé la fenêtre entre-temps : on recompte
            db.rollback()
            return check_rate_limit(db, identifier, action, max_attempts, window_seconds, now)
        return RateLimitResult(True, max_attempts - 1, now + window, max_attempts)

    if entry.expires_at <= now:
        entry.count = 1
        entry.window_start = now
        entry.expires_at = now + window
        db.commit()
        return RateLimitResult(True, max_attempts - 1, entry.expires_at, max_attempts)

    reset_time = entry.expires_at
    if entry.count >= max_attempts:
        db.commit()
        logger.warning("Rate limit atteint : action=%s identifiant=%s", action, identifier)
        return RateLimitResult(False, 0, reset_time, max_attempts)

    incremented = db.execute(
        update(RateLimitEntry)
        .where(RateLimitEntry.id == entry.id, RateLimitEntry.count < max_attempts)
        .values(count=RateLimitEntry.count + 1)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()

    if incremented != 1:
        logger.warning("Rate limit atteint : action=%s identifiant=%s", action, identifier)
        return RateLimitResult(False, 0, reset_time, max_attempts)

    db.refresh(entry)
    return RateLimitResult(True, max(max_attempts - entry.count, 0), reset_time, max_attempts)


def purge_expired(db: Session) -> int:
    """Supprime les fenêtres terminées (appelé par le scheduler)."""
    deleted = db.execute(
        delete(RateLimitEntry)
        .where(RateLimitEntry.expires_at <= utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    return deleted
