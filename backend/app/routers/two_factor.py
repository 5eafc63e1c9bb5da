"""
Router pour la double authentification : setup, confirmation, complétion du login
et désactivation.
"""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import (
    client_ip,
    get_current_user,
    get_optional_user,
    rate_limit,
    require_csrf,
    validate_origin,
)
from app.exceptions import Unauthenticated, ValidationFailed
from app.models.user import User
from app.schemas.auth import MessageResponse, UserSummary
from app.schemas.two_factor import (
    TwoFactorCompleteRequest,
    TwoFactorDisableRequest,
    TwoFactorSetupResponse,
    TwoFactorVerifyRequest,
)
from app.services import cookies, session_service, two_factor_service

router = APIRouter(prefix="/api/auth/2fa", tags=["Double authentification"])

TWO_FACTOR_RATE_LIMIT = rate_limit(
    "two_factor_verify", "RATE_LIMIT_TWO_FACTOR", "Too many verification attempts. Please try again later."
)


def _complete_login(
    db: Session,
    request: Request,
    response: Response,
    data: TwoFactorVerifyRequest,
) -> dict:
    """Finalise un login en attente et pose les cookies de session."""
    result = session_service.complete_two_factor(
        db,
        data.temp_session,
        code=data.token,
        backup_code=data.code,
        remember_device=data.remember_device,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    cookies.set_auth_cookies(response, result.tokens.access_token, result.tokens.refresh_token)
    if result.trusted_device_token:
        cookies.set_trusted_device_cookie(response, result.trusted_device_token)

    body = {
        "message": "Two-factor authentication successful",
        "user": UserSummary.model_validate(result.user),
    }
    if result.remaining_backup_codes is not None:
        body["message"] = "Backup code verification successful"
        body["remainingBackupCodes"] = result.remaining_backup_codes
    return body


@router.post(
    "/setup",
    response_model=TwoFactorSetupResponse,
    summary="Démarrer l'activation de la 2FA",
    dependencies=[Depends(validate_origin), Depends(require_csrf)],
)
def setup(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Génère le secret TOTP, le QR code et les codes de secours.
    La 2FA reste désactivée jusqu'à la confirmation par un premier code valide.
    """
    result = two_factor_service.begin_setup(db, user)
    return {
        "qr_code_url": result.qr_code_data_url,
        "otpauth_url": result.otpauth_uri,
        "secret": result.secret,
        "backup_codes": result.backup_codes,
        "message": "Scan the QR code with your authenticator app, then verify with a token",
    }


@router.post(
    "/verify",
    summary="Vérifier un code 2FA",
    dependencies=[Depends(TWO_FACTOR_RATE_LIMIT)],
)
def verify(
    data: TwoFactorVerifyRequest,
    request: Request,
    response: Response,
    user: User = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    - avec tempSession : fin du login (code TOTP ou code de secours)
    - sinon : confirmation du setup par l'utilisateur connecté (code TOTP)
    """
    if data.temp_session:
        return _complete_login(db, request, response, data)

    if user is None:
        raise Unauthenticated()
    if data.token is None:
        raise ValidationFailed("A 6-digit token is required to confirm setup")
    two_factor_service.confirm_setup(db, user, data.token)
    return {"success": True, "message": "Two-factor authentication has been successfully enabled!"}


@router.post(
    "/complete",
    summary="Finaliser la connexion après 2FA",
    dependencies=[Depends(TWO_FACTOR_RATE_LIMIT)],
)
def complete(
    data: TwoFactorCompleteRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    return _complete_login(db, request, response, data)


@router.delete(
    "",
    response_model=MessageResponse,
    summary="Désactiver la 2FA",
    dependencies=[Depends(validate_origin), Depends(require_csrf)],
)
def disable(
    data: TwoFactorDisableRequest,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Exige le mot de passe ; les appareils de confiance du compte sont oubliés."""
    two_factor_service.disable(db, user, data.password)
    cookies.clear_trusted_device_cookie(response)
    return {"message": "Two-factor authentication has been disabled"}
