"""
Modèle SQLAlchemy pour les compteurs de rate limiting (fenêtre fixe).
"""

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from app.database import Base


class RateLimitEntry(Base):
    __tablename__ = "rate_limit_entries"
    __table_args__ = (UniqueConstraint("identifier", "action", name="uq_rate_limit_identifier_action"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    identifier = Column(String(255), nullable=False)  # IP client (ou id utilisateur)
    action = Column(String(50), nullable=False)       # login_attempt, account_deletion, ...
    count = Column(Integer, nullable=False, default=1)
    window_start = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)     # fin de la fenêtre
