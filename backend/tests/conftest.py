"""
Configuration partagée pour tous les tests.

- Base SQLite en mémoire (StaticPool : une seule connexion partagée entre la
  session du test et celles ouvertes par les requêtes HTTP)
- Override de la dépendance get_db
- Envoi SMTP neutralisé ; les emails "envoyés" sont inspectables
- Coût bcrypt minimal pour garder la suite rapide
"""

import os
import re

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret-key-for-the-auth-suite"
os.environ["ENV"] = "test"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import patch

from app.database import Base, get_db
from app.main import app
from app.models.user import User
from app.services.password_service import hash_password

DEFAULT_PASSWORD = "Password123!"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine, "connect")
def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def pytest_configure(config):
    config.addinivalue_line("markers", "real_smtp: n'intercepte pas _send_html_email")


@pytest.fixture
def db():
    """Session BDD sur une base vierge, détruite après le test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    """Client HTTP de test : chaque requête ouvre sa propre session sur la base de test."""
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with patch("app.main.start_scheduler"), patch("app.main.stop_scheduler"):
        with TestClient(app) as c:
            yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def sent_emails(request):
    """Intercepte l'envoi SMTP. Le mock reçoit (destinataire, sujet, html)."""
    if "real_smtp" in request.keywords:
        yield None
        return
    with patch("app.services.email_service._send_html_email") as mock_send:
        yield mock_send


@pytest.fixture
def mailed_token(sent_emails):
    """Retourne le jeton contenu dans le dernier lien envoyé par email."""
    def _token() -> str:
        html = sent_emails.call_args[0][2]
        return re.search(r"token=([a-f0-9]{64})", html).group(1)

    return _token


@pytest.fixture
def make_user(db):
    """Fabrique d'utilisateurs persistés directement en base (sans passer par /signup)."""
    def _make(email: str = "u1@example.com", password: str = DEFAULT_PASSWORD, **kwargs) -> User:
        user = User(email=email, password_hash=hash_password(password), **kwargs)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make
