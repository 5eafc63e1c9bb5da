"""
Schéma de réponse du point d'émission des jetons CSRF.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class CsrfTokenResponse(BaseModel):
    csrf_token: str = Field(serialization_alias="csrfToken")
    expires_at: datetime = Field(serialization_alias="expiresAt")
    header_name: str = Field(default="X-CSRF-Token", serialization_alias="headerName")
