"""
Point d'entrée principal de l'API d'authentification SecureShare.
Démarrage : uvicorn app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import app.models  # noqa: F401  enregistre tous les modèles dans Base.metadata avant create_all
from app.config import settings
from app.database import Base, engine
from app.exceptions import AuthError, RateLimited, ValidationFailed
from app.routers import auth, csrf, two_factor
from app.scheduler import start_scheduler, stop_scheduler
from app.utils import utcnow

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie : crée les tables, démarre et arrête le scheduler de purge."""
    Base.metadata.create_all(bind=engine)
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="SecureShare Auth API",
    description="Authentification, sessions, double authentification et protection CSRF",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Cookies d'authentification : credentials autorisés, origines explicites uniquement
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in settings.allowed_origins if "*" not in o],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-CSRF-Token", "CSRF-Token", "X-Requested-With"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Cache-Control", "no-store")
    if settings.is_production:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


app.include_router(auth.router)
app.include_router(two_factor.router)
app.include_router(csrf.router)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Erreurs métier → {"detail": message} avec le code HTTP de la classe."""
    content = {"detail": exc.message}
    headers = {}

    if isinstance(exc, ValidationFailed) and exc.errors:
        content["errors"] = exc.errors
    if isinstance(exc, RateLimited):
        retry_after = max(int((exc.reset_time - utcnow()).total_seconds()), 0)
        content["resetTime"] = exc.reset_time.isoformat() + "Z"
        headers = {
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": exc.reset_time.isoformat() + "Z",
        }
    if exc.status_code >= 500:
        logger.error("Erreur interne %s sur %s : %s", type(exc).__name__, request.url.path, exc)
        content = {"detail": "Internal server error"}

    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Corps ou paramètres invalides → 400 avec le détail par champ."""
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({"detail": "Validation failed", "errors": errors}),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées : le détail reste dans les logs,
    le client ne reçoit qu'un message générique (jamais de trace ni d'identifiant interne).
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "SecureShare Auth API", "version": "0.1.0"}
