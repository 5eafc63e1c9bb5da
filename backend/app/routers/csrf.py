"""
Router d'émission des jetons CSRF.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_optional_user, rate_limit, validate_origin
from app.models.user import User
from app.schemas.csrf import CsrfTokenResponse
from app.services import csrf_service

router = APIRouter(prefix="/api", tags=["CSRF"])


@router.get(
    "/csrf",
    response_model=CsrfTokenResponse,
    summary="Obtenir un jeton CSRF",
    dependencies=[Depends(rate_limit("csrf_token", "RATE_LIMIT_CSRF")), Depends(validate_origin)],
)
def get_csrf_token(user: Optional[User] = Depends(get_optional_user), db: Session = Depends(get_db)):
    """
    Émet un jeton valable 30 minutes, à renvoyer dans l'en-tête X-CSRF-Token.
    Le jeton est lié à l'utilisateur connecté : demandé sans session, il ne
    permet aucune requête protégée.
    """
    token, expires_at = csrf_service.generate_csrf_token(db, user.id if user else None)
    return {"csrf_token": token, "expires_at": expires_at}
