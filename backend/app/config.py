"""
Configuration centrale de l'application via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Base de données (SQLite en local, PostgreSQL en production)
    DATABASE_URL: str = "sqlite:///./secureshare.db"

    # JWT : access token court, refresh token long et révocable
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    TOKEN_ISSUER: str = "secureshare"
    TOKEN_AUDIENCE: str = "secureshare-users"

    # Hachage des mots de passe (bcrypt)
    BCRYPT_ROUNDS: int = 12

    # Verrouillage de compte
    MAX_FAILED_LOGINS: int = 5
    LOCKOUT_MINUTES: int = 15

    # Double authentification (TOTP)
    TOTP_ISSUER: str = "SecureShare"
    BACKUP_CODE_COUNT: int = 10
    PENDING_2FA_EXPIRE_MINUTES: int = 10
    PENDING_2FA_MAX_ATTEMPTS: int = 5
    TRUSTED_DEVICE_EXPIRE_DAYS: int = 30

    # Jetons de vérification email / réinitialisation de mot de passe
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # CSRF
    CSRF_TOKEN_EXPIRE_MINUTES: int = 30

    # Rate limiting : (nombre max, fenêtre en secondes) par action
    RATE_LIMIT_LOGIN: tuple[int, int] = (10, 15 * 60)
    RATE_LIMIT_SIGNUP: tuple[int, int] = (3, 60 * 60)
    RATE_LIMIT_TWO_FACTOR: tuple[int, int] = (10, 15 * 60)
    RATE_LIMIT_REFRESH: tuple[int, int] = (10, 5 * 60)
    RATE_LIMIT_PASSWORD_RESET_REQUEST: tuple[int, int] = (3, 60 * 60)
    RATE_LIMIT_PASSWORD_RESET: tuple[int, int] = (5, 15 * 60)
    RATE_LIMIT_EMAIL_VERIFICATION: tuple[int, int] = (5, 15 * 60)
    RATE_LIMIT_RESEND_VERIFICATION: tuple[int, int] = (3, 15 * 60)
    RATE_LIMIT_PROFILE_UPDATE: tuple[int, int] = (10, 60 * 60)
    RATE_LIMIT_NOTIFICATIONS: tuple[int, int] = (60, 60)
    RATE_LIMIT_PASSWORD_CHANGE: tuple[int, int] = (5, 15 * 60)
    RATE_LIMIT_ACCOUNT_DELETION: tuple[int, int] = (2, 24 * 60 * 60)
    RATE_LIMIT_GET_PROFILE: tuple[int, int] = (100, 60)
    RATE_LIMIT_CSRF: tuple[int, int] = (60, 60)

    # Origines autorisées : BASE_URL + liste séparée par des virgules
    BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = ""
    # Ne faire confiance à X-Forwarded-For que derrière un reverse proxy
    TRUST_PROXY_HEADERS: bool = False

    # SMTP : liens de vérification et de réinitialisation
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "no-reply@secureshare.app"
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: float = 10.0

    # Purge périodique des enregistrements expirés
    PURGE_INTERVAL_MINUTES: int = 15

    # Environnement
    ENV: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def is_production(self) -> bool:
        """Active l'attribut Secure des cookies."""
        return self.ENV.lower() == "production"

    @property
    def allowed_origins(self) -> List[str]:
        """BASE_URL suivi des origines supplémentaires de CORS_ORIGINS (vides ignorées)."""
        extra = [o.strip().rstrip("/") for o in self.CORS_ORIGINS.split(",") if o.strip()]
        return [self.BASE_URL.rstrip("/")] + extra


settings = Settings()
