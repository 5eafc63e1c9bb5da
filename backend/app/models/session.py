"""
Modèles SQLAlchemy pour les sessions : sessions authentifiées (refresh tokens),
sessions 2FA en attente et appareils de confiance.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Uuid, func

from app.database import Base


class AuthSession(Base):
    """Une ligne par refresh token émis ; révoquer la ligne invalide le refresh token."""
    __tablename__ = "auth_sessions"

    id = Column(String(64), primary_key=True)  # claim "sid" des deux jetons
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)  # NULL = session active
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class PendingTwoFactorSession(Base):
    """
    Fenêtre entre la vérification du mot de passe et la saisie du code 2FA.
    Aucun jeton n'est stocké : ils sont émis à la complétion.
    """
    __tablename__ = "pending_two_factor_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class TrustedDevice(Base):
    """Navigateur dispensé de 2FA pour un utilisateur donné (cookie trusted-device)."""
    __tablename__ = "trusted_devices"

    token_hash = Column(String(64), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
