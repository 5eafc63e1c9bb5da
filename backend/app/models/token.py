"""
Modèles SQLAlchemy pour les jetons opaques à usage limité :
vérification email, réinitialisation de mot de passe et CSRF.
Seule l'empreinte SHA-256 du jeton est stockée.
"""

from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid, func

from app.database import Base

EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
PASSWORD_RESET = "PASSWORD_RESET"


class VerificationToken(Base):
    __tablename__ = "verification_tokens"

    token_hash = Column(String(64), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    purpose = Column(String(30), nullable=False)  # EMAIL_VERIFICATION, PASSWORD_RESET
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)     # NULL = encore consommable
    created_at = Column(DateTime, server_default=func.now())


class CsrfToken(Base):
    __tablename__ = "csrf_tokens"

    token_hash = Column(String(64), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
