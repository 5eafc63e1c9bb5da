"""
Schémas Pydantic pour la double authentification (TOTP et codes de secours).
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.services.totp_service import BACKUP_CODE_RE, TOTP_CODE_RE


def _check_totp(v: Optional[str]) -> Optional[str]:
    if v is not None and not TOTP_CODE_RE.match(v):
        raise ValueError("Token must be 6 digits")
    return v


def _check_backup(v: Optional[str]) -> Optional[str]:
    if v is not None and not BACKUP_CODE_RE.match(v):
        raise ValueError("Invalid backup code format")
    return v


class TwoFactorSetupResponse(BaseModel):
    qr_code_url: str = Field(serialization_alias="qrCodeUrl")
    otpauth_url: str = Field(serialization_alias="otpauthUrl")
    secret: str
    backup_codes: List[str] = Field(serialization_alias="backupCodes")
    message: str


class TwoFactorVerifyRequest(BaseModel):
    """
    Deux usages :
    - sans tempSession : confirmation du setup par l'utilisateur connecté (token requis)
    - avec tempSession : fin du login, par code TOTP (token) ou code de secours (code)
    """
    token: Optional[str] = None
    code: Optional[str] = None
    temp_session: Optional[str] = Field(default=None, alias="tempSession", max_length=128)
    remember_device: bool = Field(default=False, alias="rememberDevice")

    @field_validator("token")
    @classmethod
    def token_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_totp(v)

    @field_validator("code")
    @classmethod
    def backup_code_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_backup(v)

    @model_validator(mode="after")
    def one_code_required(self) -> "TwoFactorVerifyRequest":
        if self.token is None and self.code is None:
            raise ValueError("A 6-digit token or a backup code is required")
        if self.token is not None and self.code is not None:
            raise ValueError("Provide either a token or a backup code, not both")
        return self


class TwoFactorCompleteRequest(TwoFactorVerifyRequest):
    temp_session: str = Field(alias="tempSession", min_length=1, max_length=128)


class TwoFactorDisableRequest(BaseModel):
    password: str = Field(min_length=1)
