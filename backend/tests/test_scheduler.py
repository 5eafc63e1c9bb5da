"""
Tests unitaires pour la purge planifiée des enregistrements expirés.
"""

from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.models.token import CsrfToken
from app.scheduler import purge_expired_records
from app.utils import utcnow


def test_purge_supprime_les_jetons_expires(db, make_user):
    user = make_user()
    db.add(CsrfToken(token_hash="a" * 64, user_id=user.id, expires_at=utcnow() - timedelta(minutes=1)))
    db.add(CsrfToken(token_hash="b" * 64, user_id=user.id, expires_at=utcnow() + timedelta(minutes=10)))
    db.commit()

    with patch("app.scheduler.SessionLocal", return_value=db):
        purge_expired_records()

    assert [t.token_hash for t in db.query(CsrfToken).all()] == ["b" * 64]


def test_purge_erreur_journalisee_sans_interrompre(db):
    with patch("app.scheduler.SessionLocal", return_value=db), \
         patch("app.services.session_service.purge_expired") as mock_purge:
        mock_purge.side_effect = OperationalError("DELETE", {}, Exception("base verrouillée"))
        purge_expired_records()

    mock_purge.assert_called_once()
