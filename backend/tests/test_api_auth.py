"""
Tests d'intégration API pour l'authentification.
Testent les URLs, les codes HTTP, les cookies, les garde-fous et le format des réponses.
"""

from unittest.mock import patch

from fastapi.testclient import TestClient

from app.config import settings
from app.main import app
from app.models.session import AuthSession
from app.models.user import User

PASSWORD = "Password123!"
EVIL_ORIGIN = {"Origin": "https://evil.example.com"}


# --- Helpers ---

def signup(client, email="u1@example.com", password=PASSWORD, **extra):
    return client.post("/api/auth/signup", json={
        "email": email,
        "password": password,
        "confirmPassword": password,
        **extra,
    })


def login(client, email="u1@example.com", password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def csrf_headers(client):
    token = client.get("/api/csrf").json()["csrfToken"]
    return {"X-CSRF-Token": token}


# ============================================================
# POST /api/auth/signup
# ============================================================

def test_signup_succes(client, sent_emails):
    """Inscription valide → 201, utilisateur retourné, email de vérification envoyé."""
    response = signup(client, name="Alice")

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "u1@example.com"
    assert body["user"]["name"] == "Alice"
    assert body["requiresVerification"] is True
    assert "password_hash" not in body["user"]
    assert "auth-token" not in response.cookies
    sent_emails.assert_called_once()


def test_signup_email_duplique(client, make_user):
    make_user(email="u1@example.com")
    response = signup(client)
    assert response.status_code == 409
    assert response.json()["detail"] == "User with this email already exists"


def test_signup_mots_de_passe_differents(client):
    response = client.post("/api/auth/signup", json={
        "email": "u1@example.com", "password": PASSWORD, "confirmPassword": "Autre123!",
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Validation failed"
    assert response.json()["errors"]


def test_signup_email_invalide(client):
    response = signup(client, email="pas-un-email")
    assert response.status_code == 400


def test_signup_mot_de_passe_faible(client):
    response = signup(client, password="password")
    assert response.status_code == 400
    assert response.json()["errors"]


def test_signup_mot_de_passe_plus_de_72_octets(client, db):
    """Au-delà de 72 octets bcrypt tronquerait : le mot de passe est refusé."""
    response = signup(client, password="Aa1!" + "éè" * 20)

    assert response.status_code == 400
    assert "Password must be at most 72 bytes" in response.json()["errors"][0]["message"]
    assert db.query(User).count() == 0


def test_signup_origine_refusee(client):
    response = client.post("/api/auth/signup", headers=EVIL_ORIGIN, json={
        "email": "u1@example.com", "password": PASSWORD, "confirmPassword": PASSWORD,
    })
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid request origin"


def test_signup_origine_autorisee(client):
    response = client.post("/api/auth/signup", headers={"Origin": settings.BASE_URL}, json={
        "email": "u1@example.com", "password": PASSWORD, "confirmPassword": PASSWORD,
    })
    assert response.status_code == 201


# ============================================================
# POST /api/auth/login
# ============================================================

def test_inscription_puis_connexion_pose_les_cookies(client):
    """Scénario complet : signup → login → cookies auth-token et refresh-token, même id."""
    user_id = signup(client).json()["user"]["id"]

    response = login(client)

    assert response.status_code == 200
    assert response.json()["user"]["id"] == user_id
    assert response.json()["user"]["email"] == "u1@example.com"
    assert "auth-token" in response.cookies
    assert "refresh-token" in response.cookies
    set_cookie = " ".join(response.headers.get_list("set-cookie")).lower()
    assert "httponly" in set_cookie
    assert "samesite=strict" in set_cookie


def test_login_mauvais_mot_de_passe(client, make_user):
    make_user()
    response = login(client, password="Mauvais123!")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"
    assert "auth-token" not in response.cookies


def test_login_email_inconnu_meme_message(client):
    response = login(client, email="personne@example.com")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_login_compte_desactive(client, make_user):
    make_user(is_active=False)
    response = login(client)
    assert response.status_code == 401
    assert response.json()["detail"] == "Account disabled"


def test_login_sixieme_tentative_verrouillee(client, make_user):
    """5 échecs consécutifs → la 6e tentative, même avec le bon mot de passe, donne 423."""
    make_user()
    for _ in range(5):
        assert login(client, password="Mauvais123!").status_code == 401

    response = login(client)
    assert response.status_code == 423
    assert "auth-token" not in response.cookies


def test_login_rate_limit(client, make_user):
    make_user()
    with patch.object(settings, "RATE_LIMIT_LOGIN", (2, 900)):
        assert login(client).status_code == 200
        assert login(client).status_code == 200
        response = login(client)

    assert response.status_code == 429
    assert response.json()["detail"] == "Too many login attempts. Please try again later."
    assert "resetTime" in response.json()
    assert int(response.headers["Retry-After"]) > 0
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_login_en_tetes_rate_limit(client, make_user):
    make_user()
    response = login(client)
    assert response.headers["X-RateLimit-Limit"] == str(settings.RATE_LIMIT_LOGIN[0])
    assert response.headers["X-RateLimit-Remaining"] == str(settings.RATE_LIMIT_LOGIN[0] - 1)


def test_rate_limit_precede_la_validation(client):
    """Un client bloqué reçoit 429 même avec un corps invalide."""
    with patch.object(settings, "RATE_LIMIT_LOGIN", (1, 900)):
        client.post("/api/auth/login", json={})
        response = client.post("/api/auth/login", json={})
    assert response.status_code == 429


def test_login_erreur_interne_generique(client, make_user):
    make_user()
    raw_client = TestClient(app, raise_server_exceptions=False)
    with patch("app.routers.auth.session_service.login") as mock:
        mock.side_effect = RuntimeError("connexion BDD perdue : host=10.0.0.3")
        response = raw_client.post("/api/auth/login", json={"email": "u1@example.com", "password": PASSWORD})
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


# ============================================================
# GET /api/auth/me, POST /api/auth/refresh, POST /api/auth/logout
# ============================================================

def test_me_authentifie(client, make_user):
    make_user(name="Alice")
    login(client)

    response = client.get("/api/auth/me")

    assert response.status_code == 200
    user = response.json()["user"]
    assert user["email"] == "u1@example.com"
    assert user["emailVerified"] is False
    assert user["twoFactorEnabled"] is False
    assert "two_factor_secret" not in user


def test_me_sans_cookie(client):
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_refresh_rotation(client, make_user):
    make_user()
    login(client)
    old_refresh = client.cookies.get("refresh-token")

    response = client.post("/api/auth/refresh")

    assert response.status_code == 200
    assert response.json()["message"] == "Token refreshed successfully"
    assert client.cookies.get("refresh-token") != old_refresh

    client.cookies.clear()
    client.cookies.set("refresh-token", old_refresh)
    assert client.post("/api/auth/refresh").status_code == 401


def test_refresh_sans_cookie(client):
    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    assert response.json()["detail"] == "Refresh token not found"


def test_logout_revoque_et_efface(client, make_user, db):
    make_user()
    login(client)
    refresh_token = client.cookies.get("refresh-token")

    response = client.post("/api/auth/logout")

    assert response.status_code == 200
    assert response.json()["message"] == "Logout successful"
    assert client.cookies.get("auth-token") is None
    db.expire_all()
    assert all(s.revoked_at is not None for s in db.query(AuthSession).all())

    client.cookies.clear()
    client.cookies.set("refresh-token", refresh_token)
    assert client.post("/api/auth/refresh").status_code == 401


def test_logout_sans_session(client):
    assert client.post("/api/auth/logout").status_code == 200


# ============================================================
# Mot de passe oublié / réinitialisation
# ============================================================

def test_forgot_password_reponses_identiques(client, make_user):
    """Compte existant ou non : même statut, même corps."""
    make_user()
    existing = client.post("/api/auth/forgot-password", json={"email": "u1@example.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "personne@example.com"})

    assert existing.status_code == unknown.status_code == 200
    assert existing.content == unknown.content


def test_forgot_password_erreur_interne_masquee(client, make_user):
    make_user()
    normal = client.post("/api/auth/forgot-password", json={"email": "personne@example.com"})
    with patch("app.routers.auth.verification_service.initiate_password_reset") as mock:
        mock.side_effect = RuntimeError("BDD indisponible")
        failing = client.post("/api/auth/forgot-password", json={"email": "u1@example.com"})

    assert failing.status_code == 200
    assert failing.content == normal.content


def test_reset_password_parcours_complet(client, make_user, mailed_token):
    make_user()
    client.post("/api/auth/forgot-password", json={"email": "u1@example.com"})
    token = mailed_token()

    check = client.get("/api/auth/reset-password", params={"token": token})
    assert check.status_code == 200
    assert check.json()["valid"] is True

    response = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "NewPassword456!"})
    assert response.status_code == 200

    assert login(client, password=PASSWORD).status_code == 401
    assert login(client, password="NewPassword456!").status_code == 200

    reuse = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "Other789Pass!"})
    assert reuse.status_code == 400
    assert reuse.json()["detail"] == "Invalid or expired token"


def test_reset_password_jeton_inconnu(client):
    response = client.get("/api/auth/reset-password", params={"token": "a" * 64})
    assert response.status_code == 400


def test_reset_password_jeton_trop_court(client):
    response = client.post("/api/auth/reset-password", json={"token": "abc", "newPassword": "NewPassword456!"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Validation failed"


# ============================================================
# Vérification d'email
# ============================================================

def test_verify_email_usage_unique(client, mailed_token, db):
    signup(client)
    token = mailed_token()

    first = client.post("/api/auth/verify-email", json={"token": token})
    second = client.post("/api/auth/verify-email", json={"token": token})

    assert first.status_code == 200
    assert second.status_code == 400
    assert second.json()["detail"] == "Invalid or expired token"
    db.expire_all()
    assert db.query(User).filter_by(email="u1@example.com").one().email_verified is True


def test_verify_email_par_lien(client, mailed_token):
    signup(client)
    response = client.get("/api/auth/verify-email", params={"token": mailed_token()})
    assert response.status_code == 200


def test_verify_email_jeton_mal_forme(client):
    response = client.get("/api/auth/verify-email", params={"token": "court"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid verification token format"


def test_verify_email_jeton_absent(client):
    response = client.get("/api/auth/verify-email")
    assert response.status_code == 400
    assert response.json()["detail"] == "Verification token is required"


def test_resend_verification_reponses_identiques(client, make_user, sent_emails):
    make_user(email="nonverifie@example.com")
    make_user(email="verifie@example.com", email_verified=True)

    responses = [
        client.post("/api/auth/resend-verification", json={"email": email})
        for email in ("nonverifie@example.com", "verifie@example.com", "personne@example.com")
    ]

    assert {r.status_code for r in responses} == {200}
    assert len({r.content for r in responses}) == 1
    sent_emails.assert_called_once()


def test_resend_verification_rate_limit(client):
    for _ in range(settings.RATE_LIMIT_RESEND_VERIFICATION[0]):
        client.post("/api/auth/resend-verification", json={"email": "x@example.com"})
    response = client.post("/api/auth/resend-verification", json={"email": "x@example.com"})
    assert response.status_code == 429


# ============================================================
# Profil, mot de passe, compte (CSRF)
# ============================================================

def test_update_profile_sans_csrf_refuse(client, make_user):
    make_user()
    login(client)
    response = client.put("/api/auth/profile", json={"name": "Alice"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid CSRF token"


def test_update_profile_csrf_mal_forme_refuse(client, make_user):
    make_user()
    login(client)
    response = client.put("/api/auth/profile", json={"name": "Alice"}, headers={"X-CSRF-Token": "xyz"})
    assert response.status_code == 403


def test_update_profile_succes(client, make_user):
    make_user()
    login(client)
    headers = csrf_headers(client)

    response = client.put("/api/auth/profile", json={"name": "Alice", "email": "alice@example.com"},
                          headers=headers)

    assert response.status_code == 200
    assert response.json()["user"]["email"] == "alice@example.com"
    assert response.json()["user"]["name"] == "Alice"


def test_update_profile_en_tete_csrf_alternatif(client, make_user):
    make_user()
    login(client)
    token = client.get("/api/csrf").json()["csrfToken"]
    response = client.put("/api/auth/profile", json={"name": "Alice"}, headers={"CSRF-Token": token})
    assert response.status_code == 200


def test_update_profile_email_deja_pris(client, make_user):
    make_user(email="pris@example.com")
    make_user()
    login(client)
    response = client.put("/api/auth/profile", json={"email": "pris@example.com"}, headers=csrf_headers(client))
    assert response.status_code == 409


def test_update_profile_non_authentifie(client):
    response = client.put("/api/auth/profile", json={"name": "Alice"})
    assert response.status_code == 401


NOTIFICATIONS_OFF = {"emailNotifications": False, "shareNotifications": True, "securityAlerts": False}


def test_notifications_par_defaut(client, make_user):
    make_user()
    login(client)

    response = client.get("/api/auth/notifications")

    assert response.status_code == 200
    assert response.json() == {"settings": {
        "emailNotifications": True, "shareNotifications": True, "securityAlerts": True,
    }}


def test_notifications_non_authentifie(client):
    assert client.get("/api/auth/notifications").status_code == 401


def test_update_notifications_succes(client, make_user):
    make_user()
    login(client)

    response = client.put("/api/auth/notifications", json=NOTIFICATIONS_OFF, headers=csrf_headers(client))

    assert response.status_code == 200
    assert response.json()["message"] == "Notification settings updated successfully"
    assert response.json()["settings"] == NOTIFICATIONS_OFF
    assert client.get("/api/auth/notifications").json()["settings"] == NOTIFICATIONS_OFF


def test_update_notifications_sans_csrf_refuse(client, make_user, db):
    user = make_user()
    login(client)

    response = client.put("/api/auth/notifications", json=NOTIFICATIONS_OFF)

    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid CSRF token"
    db.expire_all()
    assert db.get(User, user.id).email_notifications is True


def test_update_notifications_champ_manquant(client, make_user):
    make_user()
    login(client)
    response = client.put("/api/auth/notifications", json={"emailNotifications": False},
                          headers=csrf_headers(client))
    assert response.status_code == 400
    assert response.json()["detail"] == "Validation failed"


def test_update_notifications_origine_refusee(client, make_user):
    make_user()
    login(client)
    headers = {**csrf_headers(client), **EVIL_ORIGIN}
    response = client.put("/api/auth/notifications", json=NOTIFICATIONS_OFF, headers=headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid request origin"


def test_change_password_succes(client, make_user):
    make_user()
    login(client)
    old_refresh = client.cookies.get("refresh-token")

    response = client.post("/api/auth/password", headers=csrf_headers(client), json={
        "currentPassword": PASSWORD, "newPassword": "NewPassword456!",
    })

    assert response.status_code == 200
    assert client.cookies.get("refresh-token") != old_refresh
    assert client.get("/api/auth/me").status_code == 200

    client.cookies.clear()
    client.cookies.set("refresh-token", old_refresh)
    assert client.post("/api/auth/refresh").status_code == 401


def test_change_password_actuel_incorrect(client, make_user):
    make_user()
    login(client)
    response = client.post("/api/auth/password", headers=csrf_headers(client), json={
        "currentPassword": "Mauvais123!", "newPassword": "NewPassword456!",
    })
    assert response.status_code == 400
    assert response.json()["detail"] == "Current password is incorrect"


def test_delete_account_succes(client, make_user, db):
    make_user()
    login(client)

    response = client.delete("/api/auth/account", headers=csrf_headers(client))

    assert response.status_code == 200
    assert response.json()["message"] == "Account deleted successfully"
    db.expire_all()
    assert db.query(User).count() == 0
    assert client.get("/api/auth/me").status_code == 401


def test_delete_account_sans_csrf(client, make_user, db):
    make_user()
    login(client)
    response = client.delete("/api/auth/account")
    assert response.status_code == 403
    db.expire_all()
    assert db.query(User).count() == 1


def test_delete_account_rate_limit_strict(client, make_user):
    make_user()
    login(client)
    for _ in range(settings.RATE_LIMIT_ACCOUNT_DELETION[0]):
        client.delete("/api/auth/account")
    response = client.delete("/api/auth/account")
    assert response.status_code == 429
    assert response.json()["detail"] == "Too many account deletion attempts. Please try again later."


# ============================================================
# Santé et en-têtes de sécurité
# ============================================================

def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
