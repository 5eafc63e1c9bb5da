"""
Planificateur APScheduler pour la purge des enregistrements d'authentification expirés.

Le job s'exécute toutes les PURGE_INTERVAL_MINUTES minutes et supprime :
sessions expirées ou révoquées, sessions 2FA en attente expirées, appareils de
confiance expirés, fenêtres de rate limit terminées, jetons CSRF expirés et
jetons de vérification expirés ou consommés.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import settings
from app.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def purge_expired_records() -> None:
    """
    Tâche planifiée. Une erreur est journalisée sans interrompre le scheduler :
    la purge suivante reprendra les mêmes lignes.
    Import local pour éviter les imports circulaires.
    """
    from app.services import csrf_service, rate_limit_service, session_service, verification_service

    db = SessionLocal()
    try:
        sessions = session_service.purge_expired(db)
        windows = rate_limit_service.purge_expired(db)
        csrf_tokens = csrf_service.purge_expired(db)
        tokens = verification_service.purge_expired(db)
        logger.info(
            "Purge : %d sessions, %d fenêtres de rate limit, %d jetons CSRF, %d jetons de vérification",
            sessions, windows, csrf_tokens, tokens,
        )
    except Exception as exc:
        db.rollback()
        logger.error("Erreur lors de la purge des enregistrements expirés : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        purge_expired_records,
        trigger="interval",
        minutes=settings.PURGE_INTERVAL_MINUTES,
        id="purge_expired_auth_records",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler démarré, purge toutes les %d minutes.", settings.PURGE_INTERVAL_MINUTES)


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
