"""
Router d'authentification : inscription, connexion, session, email,
mot de passe et compte.

Les erreurs métier (AuthError) sont traduites en réponses JSON par main.py.
Les garde-fous (rate limit, origine, CSRF) sont des dépendances résolues
avant la lecture du corps de la requête.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import client_ip, get_current_user, rate_limit, require_csrf, validate_origin
from app.exceptions import InvalidToken, Unauthenticated, ValidationFailed
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    EmailRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    NotificationSettings,
    NotificationSettingsResponse,
    NotificationSettingsUpdateResponse,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    ResetPasswordRequest,
    SignupRequest,
    TokenRequest,
    UserSummary,
    validate_query_token,
)
from app.services import cookies, session_service, token_service, user_service, verification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentification"])

FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, we've sent a password reset link. "
    "Please check your email and follow the instructions."
)
RESEND_VERIFICATION_MESSAGE = (
    "If an account with that email exists and is not verified, we've sent a new verification email."
)


def _user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


# ============================================================
# Inscription / connexion
# ============================================================

@router.post(
    "/signup",
    status_code=201,
    summary="Créer un compte",
    dependencies=[
        Depends(rate_limit("signup_attempt", "RATE_LIMIT_SIGNUP",
                           "Too many signup attempts. Please try again later.")),
        Depends(validate_origin),
    ],
)
def signup(data: SignupRequest, db: Session = Depends(get_db)):
    """
    Crée le compte et envoie le lien de vérification d'adresse.
    Aucun cookie n'est posé : l'utilisateur se connecte ensuite.
    """
    user = session_service.register(db, data.email, data.password, data.name)
    return {
        "message": "Account created successfully! Please check your email for verification instructions.",
        "user": UserSummary.model_validate(user),
        "requiresVerification": True,
    }


@router.post(
    "/login",
    summary="Se connecter",
    dependencies=[
        Depends(rate_limit("login_attempt", "RATE_LIMIT_LOGIN",
                           "Too many login attempts. Please try again later.")),
        Depends(validate_origin),
    ],
)
def login(data: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Vérifie les identifiants.

    - 2FA désactivée (ou appareil de confiance) : cookies auth-token et refresh-token posés
    - 2FA activée : {requires2FA: true, tempSession} sans aucun cookie d'authentification
    """
    result = session_service.login(
        db,
        data.email,
        data.password,
        ip_address=client_ip(request),
        user_agent=_user_agent(request),
        device_token=request.cookies.get(cookies.TRUSTED_DEVICE_COOKIE),
    )

    if result.requires_2fa:
        return {
            "requires2FA": True,
            "tempSession": result.temp_session,
            "message": "Two-factor authentication required",
        }

    cookies.set_auth_cookies(response, result.tokens.access_token, result.tokens.refresh_token)
    if result.trusted_device_token:
        cookies.set_trusted_device_cookie(response, result.trusted_device_token)
    return {"message": "Login successful", "user": UserSummary.model_validate(result.user)}


@router.post("/logout", response_model=MessageResponse, summary="Se déconnecter")
def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    """Révoque le refresh token (au mieux) et efface les cookies de session."""
    session_service.logout(db, request.cookies.get(cookies.REFRESH_COOKIE))
    cookies.clear_auth_cookies(response)
    return {"message": "Logout successful"}


@router.post(
    "/refresh",
    response_model=AuthResponse,
    summary="Renouveler les jetons",
    dependencies=[
        Depends(rate_limit("refresh_attempt", "RATE_LIMIT_REFRESH",
                           "Too many token refresh requests. Please try again later.")),
        Depends(validate_origin),
    ],
)
def refresh(request: Request, response: Response, db: Session = Depends(get_db)):
    """Échange le refresh token contre une nouvelle paire ; l'ancien est révoqué."""
    refresh_token = request.cookies.get(cookies.REFRESH_COOKIE)
    if not refresh_token:
        raise Unauthenticated("Refresh token not found")

    user, pair = token_service.rotate_refresh_token(
        db, refresh_token, ip_address=client_ip(request), user_agent=_user_agent(request)
    )
    cookies.set_auth_cookies(response, pair.access_token, pair.refresh_token)
    return {"message": "Token refreshed successfully", "user": user}


@router.get(
    "/me",
    response_model=MeResponse,
    summary="Utilisateur connecté",
    dependencies=[
        Depends(rate_limit("get_profile", "RATE_LIMIT_GET_PROFILE")),
        Depends(validate_origin),
    ],
)
def me(user: User = Depends(get_current_user)):
    return {"user": user}


# ============================================================
# Mot de passe oublié / réinitialisation
# ============================================================

@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Demander un lien de réinitialisation",
    dependencies=[
        Depends(rate_limit("password_reset_request", "RATE_LIMIT_PASSWORD_RESET_REQUEST",
                           "Too many password reset requests. Please try again later.")),
    ],
)
def forgot_password(data: EmailRequest, db: Session = Depends(get_db)):
    """
    Réponse identique que le compte existe ou non, y compris en cas d'erreur interne,
    pour ne jamais révéler l'existence d'une adresse.
    """
    try:
        verification_service.initiate_password_reset(db, data.email)
    except Exception as exc:
        db.rollback()
        logger.error("Erreur lors de la demande de réinitialisation : %s", exc, exc_info=True)
    return {"message": FORGOT_PASSWORD_MESSAGE}


@router.get(
    "/reset-password",
    summary="Vérifier un lien de réinitialisation",
    dependencies=[
        Depends(rate_limit("password_reset", "RATE_LIMIT_PASSWORD_RESET",
                           "Too many password reset attempts. Please try again later.")),
    ],
)
def check_reset_token(token: Optional[str] = None, db: Session = Depends(get_db)):
    """Valide le jeton sans le consommer (affichage du formulaire côté client)."""
    if not token:
        raise ValidationFailed("Reset token is required")
    token = validate_query_token(token)
    if token is None or not verification_service.check_reset_token(db, token):
        raise InvalidToken("Invalid or expired reset token")
    return {"valid": True, "message": "Token is valid. You can proceed with password reset."}


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Réinitialiser le mot de passe",
    dependencies=[
        Depends(rate_limit("password_reset", "RATE_LIMIT_PASSWORD_RESET",
                           "Too many password reset attempts. Please try again later.")),
    ],
)
def reset_password(data: ResetPasswordRequest, response: Response, db: Session = Depends(get_db)):
    """Consomme le jeton, remplace le mot de passe et révoque toutes les sessions."""
    verification_service.reset_password(db, data.token, data.new_password)
    cookies.clear_auth_cookies(response)
    return {"message": "Password reset successfully. You can now login with your new password."}


# ============================================================
# Vérification d'email
# ============================================================

EMAIL_VERIFIED_MESSAGE = "Email verified successfully. You can now login to your account."


@router.get(
    "/verify-email",
    response_model=MessageResponse,
    summary="Vérifier l'adresse email (lien)",
    dependencies=[
        Depends(rate_limit("email_verification", "RATE_LIMIT_EMAIL_VERIFICATION",
                           "Too many verification attempts. Please try again later.")),
    ],
)
def verify_email_link(token: Optional[str] = None, db: Session = Depends(get_db)):
    if not token:
        raise ValidationFailed("Verification token is required")
    token = validate_query_token(token)
    if token is None:
        raise ValidationFailed("Invalid verification token format")
    verification_service.verify_email(db, token)
    return {"message": EMAIL_VERIFIED_MESSAGE}


@router.post(
    "/verify-email",
    response_model=MessageResponse,
    summary="Vérifier l'adresse email",
    dependencies=[
        Depends(rate_limit("email_verification", "RATE_LIMIT_EMAIL_VERIFICATION",
                           "Too many verification attempts. Please try again later.")),
    ],
)
def verify_email(data: TokenRequest, db: Session = Depends(get_db)):
    verification_service.verify_email(db, data.token)
    return {"message": EMAIL_VERIFIED_MESSAGE}


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    summary="Renvoyer l'email de vérification",
    dependencies=[
        Depends(rate_limit("resend_verification", "RATE_LIMIT_RESEND_VERIFICATION",
                           "Too many verification email requests. Please try again later.")),
        Depends(validate_origin),
    ],
)
def resend_verification(data: EmailRequest, db: Session = Depends(get_db)):
    """Même réponse pour une adresse inconnue, déjà vérifiée ou en cas d'erreur interne."""
    try:
        verification_service.resend_verification(db, data.email)
    except Exception as exc:
        db.rollback()
        logger.error("Erreur lors du renvoi de vérification : %s", exc, exc_info=True)
    return {"message": RESEND_VERIFICATION_MESSAGE}


# ============================================================
# Compte
# ============================================================

@router.put(
    "/profile",
    response_model=AuthResponse,
    summary="Modifier le profil",
    dependencies=[
        Depends(rate_limit("profile_update", "RATE_LIMIT_PROFILE_UPDATE",
                           "Too many profile update attempts. Please try again later.")),
        Depends(validate_origin),
        Depends(require_csrf),
    ],
)
def update_profile(
    data: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = user_service.update_profile(db, user, email=data.email, name=data.name)
    return {"message": "Profile updated successfully", "user": user}


@router.get(
    "/notifications",
    response_model=NotificationSettingsResponse,
    summary="Préférences de notification",
    dependencies=[
        Depends(rate_limit("notifications_get", "RATE_LIMIT_NOTIFICATIONS")),
        Depends(validate_origin),
    ],
)
def get_notifications(user: User = Depends(get_current_user)):
    return {"settings": user_service.get_notification_settings(user)}


@router.put(
    "/notifications",
    response_model=NotificationSettingsUpdateResponse,
    summary="Modifier les préférences de notification",
    dependencies=[
        Depends(rate_limit("notifications_update", "RATE_LIMIT_NOTIFICATIONS",
                           "Too many notification update attempts. Please try again later.")),
        Depends(validate_origin),
        Depends(require_csrf),
    ],
)
def update_notifications(
    data: NotificationSettings,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    preferences = user_service.update_notification_settings(
        db,
        user,
        email_notifications=data.email_notifications,
        share_notifications=data.share_notifications,
        security_alerts=data.security_alerts,
    )
    return {"message": "Notification settings updated successfully", "settings": preferences}


@router.post(
    "/password",
    response_model=MessageResponse,
    summary="Changer le mot de passe",
    dependencies=[
        Depends(rate_limit("password_change", "RATE_LIMIT_PASSWORD_CHANGE",
                           "Too many password change attempts. Please try again later.")),
        Depends(validate_origin),
        Depends(require_csrf),
    ],
)
def change_password(
    data: PasswordChangeRequest,
    request: Request,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Re-vérifie le mot de passe actuel, révoque toutes les sessions
    et pose une nouvelle paire de cookies pour ce navigateur.
    """
    pair = user_service.change_password(
        db, user, data.current_password, data.new_password,
        ip_address=client_ip(request), user_agent=_user_agent(request),
    )
    cookies.set_auth_cookies(response, pair.access_token, pair.refresh_token)
    return {"message": "Password changed successfully"}


@router.delete(
    "/account",
    response_model=MessageResponse,
    summary="Supprimer le compte",
    dependencies=[
        Depends(rate_limit("account_deletion", "RATE_LIMIT_ACCOUNT_DELETION",
                           "Too many account deletion attempts. Please try again later.")),
        Depends(validate_origin),
        Depends(require_csrf),
    ],
)
def delete_account(response: Response, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user_service.delete_account(db, user.id)
    cookies.clear_auth_cookies(response)
    cookies.clear_trusted_device_cookie(response)
    return {"message": "Account deleted successfully"}
