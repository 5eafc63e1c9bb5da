"""
Configuration de la connexion à la base de données.
SQLite en développement, PostgreSQL en production (psycopg2).

Toutes les données partagées entre workers (sessions 2FA en attente, compteurs de
rate limiting, révocation des refresh tokens, jetons CSRF) vivent ici et jamais en
mémoire du processus.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from app.config import settings

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# check_same_thread=False : les endpoints synchrones tournent dans le threadpool de FastAPI
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    pool_pre_ping=not _is_sqlite,
)


if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        """SQLite n'applique ON DELETE CASCADE qu'avec foreign_keys=ON."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI : fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
