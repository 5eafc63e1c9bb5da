"""
Schémas Pydantic pour l'authentification : inscription, connexion, profil,
mot de passe, vérification d'email et réinitialisation.

Les noms de champs JSON suivent le client web (camelCase : confirmPassword,
newPassword, currentPassword).
"""

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from app.services.password_service import BCRYPT_MAX_BYTES, TOO_LONG_MESSAGE

TOKEN_MIN_LENGTH = 48
TOKEN_MAX_LENGTH = 96


def _check_password_bytes(v: str) -> str:
    if len(v.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValueError(TOO_LONG_MESSAGE)
    return v


def _check_token(v: str) -> str:
    v = v.strip()
    if not TOKEN_MIN_LENGTH <= len(v) <= TOKEN_MAX_LENGTH:
        raise ValueError(f"Token must be between {TOKEN_MIN_LENGTH} and {TOKEN_MAX_LENGTH} characters")
    return v


class UserSummary(BaseModel):
    """Représentation publique d'un utilisateur (jamais d'empreinte ni de secret 2FA)."""
    id: uuid.UUID
    email: str
    name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserProfile(UserSummary):
    email_verified: bool = Field(serialization_alias="emailVerified")
    two_factor_enabled: bool = Field(serialization_alias="twoFactorEnabled")


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    confirm_password: str = Field(alias="confirmPassword")
    name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("password")
    @classmethod
    def password_bytes(cls, v: str) -> str:
        return _check_password_bytes(v)

    @model_validator(mode="after")
    def passwords_match(self) -> "SignupRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class ProfileUpdateRequest(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def at_least_one_field(self) -> "ProfileUpdateRequest":
        if self.email is None and self.name is None:
            raise ValueError("At least one of email or name must be provided")
        return self


class NotificationSettings(BaseModel):
    """Préférences de notification, en entrée (PUT) comme en sortie (GET/PUT)."""
    email_notifications: bool = Field(alias="emailNotifications")
    share_notifications: bool = Field(alias="shareNotifications")
    security_alerts: bool = Field(alias="securityAlerts")

    model_config = ConfigDict(populate_by_name=True)


class NotificationSettingsResponse(BaseModel):
    settings: NotificationSettings


class NotificationSettingsUpdateResponse(NotificationSettingsResponse):
    message: str


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(alias="currentPassword", min_length=1)
    new_password: str = Field(alias="newPassword", min_length=8, max_length=128)

    @field_validator("new_password")
    @classmethod
    def new_password_bytes(cls, v: str) -> str:
        return _check_password_bytes(v)


class EmailRequest(BaseModel):
    """Corps de forgot-password et resend-verification."""
    email: EmailStr

    @field_validator("email")
    @classmethod
    def email_max_length(cls, v: str) -> str:
        if len(v) > 254:
            raise ValueError("Email address is too long")
        return v


class TokenRequest(BaseModel):
    """Jeton de vérification d'email (POST /auth/verify-email)."""
    token: str

    @field_validator("token")
    @classmethod
    def token_length(cls, v: str) -> str:
        return _check_token(v)


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(alias="newPassword", min_length=8, max_length=128)

    @field_validator("token")
    @classmethod
    def token_length(cls, v: str) -> str:
        return _check_token(v)

    @field_validator("new_password")
    @classmethod
    def new_password_bytes(cls, v: str) -> str:
        return _check_password_bytes(v)


def validate_query_token(token: Optional[str]) -> Optional[str]:
    """Même contrôle que TokenRequest pour un jeton passé en query string."""
    if not token:
        return None
    try:
        return _check_token(token)
    except ValueError:
        return None


class MessageResponse(BaseModel):
    message: str


class AuthResponse(BaseModel):
    message: str
    user: UserSummary


class MeResponse(BaseModel):
    user: UserProfile
