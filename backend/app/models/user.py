"""
Modèle SQLAlchemy pour les utilisateurs.
Porte l'état de connexion (échecs, verrouillage) et l'état 2FA.
"""

import uuid
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Uuid, func

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(254), unique=True, nullable=False, index=True)  # toujours en minuscules
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    email_verified = Column(Boolean, nullable=False, default=False)

    # 2FA : secret présent dès le début du setup, enabled seulement après vérification
    two_factor_enabled = Column(Boolean, nullable=False, default=False)
    two_factor_secret = Column(String(64), nullable=True)
    two_factor_backup_codes = Column(JSON, nullable=True)  # empreintes SHA-256 des codes restants
    totp_last_used_step = Column(Integer, nullable=True)   # anti-rejeu : dernier pas TOTP accepté

    # Préférences de notification (toutes actives par défaut)
    email_notifications = Column(Boolean, nullable=False, default=True)
    share_notifications = Column(Boolean, nullable=False, default=True)
    security_alerts = Column(Boolean, nullable=False, default=True)

    failed_login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime, nullable=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
