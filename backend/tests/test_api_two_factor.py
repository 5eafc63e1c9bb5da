"""
Tests d'intégration API pour la double authentification :
activation, connexion en deux étapes, codes de secours, appareil de confiance, désactivation.
"""

import time

from app.models.session import PendingTwoFactorSession
from app.models.user import User
from app.services import totp_service, two_factor_service

PASSWORD = "Password123!"


# --- Helpers ---

def login(client, email="u1@example.com", password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def next_code(secret):
    return totp_service.get_current_code(secret, for_time=time.time() + 30)


def enable_2fa(db, user):
    setup = two_factor_service.begin_setup(db, user)
    two_factor_service.confirm_setup(db, user, totp_service.get_current_code(setup.secret))
    return setup


def csrf_headers(client):
    return {"X-CSRF-Token": client.get("/api/csrf").json()["csrfToken"]}


# ============================================================
# POST /api/auth/2fa/setup + /verify (confirmation)
# ============================================================

def test_setup_puis_confirmation(client, make_user, db):
    user = make_user()
    login(client)

    setup = client.post("/api/auth/2fa/setup", headers=csrf_headers(client))

    assert setup.status_code == 200
    body = setup.json()
    assert body["qrCodeUrl"].startswith("data:image/png;base64,")
    assert body["otpauthUrl"].startswith("otpauth://totp/")
    assert len(body["backupCodes"]) == 10
    db.expire_all()
    assert db.get(User, user.id).two_factor_enabled is False

    confirm = client.post("/api/auth/2fa/verify", json={
        "token": totp_service.get_current_code(body["secret"]),
    })

    assert confirm.status_code == 200
    assert confirm.json()["success"] is True
    db.expire_all()
    assert db.get(User, user.id).two_factor_enabled is True


def test_setup_non_authentifie(client):
    assert client.post("/api/auth/2fa/setup").status_code == 401


def test_setup_deja_active(client, make_user, db):
    _login_with_2fa(client, db, make_user())
    response = client.post("/api/auth/2fa/setup", headers=csrf_headers(client))
    assert response.status_code == 409


def test_setup_sans_csrf_refuse(client, make_user, db):
    """Le setup remplace secret et codes de secours : jeton CSRF exigé."""
    user = make_user()
    login(client)

    response = client.post("/api/auth/2fa/setup")

    assert response.status_code == 403
    db.expire_all()
    assert db.get(User, user.id).two_factor_secret is None


def test_confirmation_sans_session(client):
    response = client.post("/api/auth/2fa/verify", json={"token": "123456"})
    assert response.status_code == 401


def test_verify_format_invalide(client):
    response = client.post("/api/auth/2fa/verify", json={"token": "12ab56", "tempSession": "x"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Validation failed"


def test_verify_sans_code(client):
    response = client.post("/api/auth/2fa/verify", json={"tempSession": "x"})
    assert response.status_code == 400


# ============================================================
# Connexion en deux étapes
# ============================================================

def test_login_2fa_sans_cookie_puis_complete(client, make_user, db):
    """Login → requires2FA sans cookie ; complete → cookies ; réutilisation → session expirée."""
    user = make_user()
    setup = enable_2fa(db, user)

    first = login(client)

    assert first.status_code == 200
    assert first.json()["requires2FA"] is True
    temp_session = first.json()["tempSession"]
    assert temp_session
    assert "auth-token" not in first.cookies
    assert "refresh-token" not in first.cookies

    done = client.post("/api/auth/2fa/complete", json={
        "tempSession": temp_session, "token": next_code(setup.secret),
    })

    assert done.status_code == 200
    assert done.json()["user"]["id"] == str(user.id)
    assert "auth-token" in done.cookies
    assert "refresh-token" in done.cookies
    assert client.get("/api/auth/me").status_code == 200

    reuse = client.post("/api/auth/2fa/complete", json={
        "tempSession": temp_session, "token": next_code(setup.secret),
    })
    assert reuse.status_code == 400
    assert reuse.json()["detail"] == "Session expired. Please log in again."


def test_complete_via_verify(client, make_user, db):
    setup = enable_2fa(db, make_user())
    temp_session = login(client).json()["tempSession"]

    response = client.post("/api/auth/2fa/verify", json={
        "tempSession": temp_session, "token": next_code(setup.secret),
    })

    assert response.status_code == 200
    assert "auth-token" in response.cookies


def test_complete_code_invalide(client, make_user, db):
    setup = enable_2fa(db, make_user())
    temp_session = login(client).json()["tempSession"]
    now = time.time()
    valid = {totp_service.get_current_code(setup.secret, for_time=now + d) for d in (-30, 0, 30)}
    wrong = next(c for c in ("000000", "111111", "222222", "333333") if c not in valid)

    response = client.post("/api/auth/2fa/complete", json={"tempSession": temp_session, "token": wrong})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid verification code"
    assert "auth-token" not in response.cookies
    db.expire_all()
    assert db.get(PendingTwoFactorSession, temp_session).attempts == 1


def test_complete_session_inconnue(client):
    response = client.post("/api/auth/2fa/complete", json={"tempSession": "inconnue", "token": "123456"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Session expired. Please log in again."


def test_complete_code_de_secours(client, make_user, db):
    setup = enable_2fa(db, make_user())
    temp_session = login(client).json()["tempSession"]

    response = client.post("/api/auth/2fa/complete", json={
        "tempSession": temp_session, "code": setup.backup_codes[0],
    })

    assert response.status_code == 200
    assert response.json()["message"] == "Backup code verification successful"
    assert response.json()["remainingBackupCodes"] == 9
    assert "auth-token" in response.cookies


def test_code_de_secours_usage_unique(client, make_user, db):
    setup = enable_2fa(db, make_user())
    code = setup.backup_codes[0]
    client.post("/api/auth/2fa/complete", json={"tempSession": login(client).json()["tempSession"], "code": code})
    client.cookies.clear()

    response = client.post("/api/auth/2fa/complete", json={
        "tempSession": login(client).json()["tempSession"], "code": code,
    })

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid verification code"


def test_appareil_de_confiance(client, make_user, db):
    """rememberDevice → cookie trusted-device ; la connexion suivante saute la 2FA."""
    setup = enable_2fa(db, make_user())
    temp_session = login(client).json()["tempSession"]

    done = client.post("/api/auth/2fa/complete", json={
        "tempSession": temp_session, "token": next_code(setup.secret), "rememberDevice": True,
    })
    assert "trusted-device" in done.cookies
    device_token = done.cookies["trusted-device"]

    client.post("/api/auth/logout")
    second = login(client)

    assert second.status_code == 200
    assert "requires2FA" not in second.json()
    assert "auth-token" in second.cookies
    # le jeton d'appareil est renouvelé à chaque usage
    assert second.cookies["trusted-device"] != device_token


def test_appareil_de_confiance_d_un_autre_compte_ignore(client, make_user, db):
    alice_setup = enable_2fa(db, make_user(email="alice@example.com"))
    enable_2fa(db, make_user(email="bob@example.com"))
    temp_session = login(client, email="alice@example.com").json()["tempSession"]
    client.post("/api/auth/2fa/complete", json={
        "tempSession": temp_session, "token": next_code(alice_setup.secret), "rememberDevice": True,
    })
    client.post("/api/auth/logout")

    response = login(client, email="bob@example.com")

    assert response.json()["requires2FA"] is True


# ============================================================
# DELETE /api/auth/2fa
# ============================================================

def _login_with_2fa(client, db, user):
    setup = enable_2fa(db, user)
    temp_session = login(client).json()["tempSession"]
    client.post("/api/auth/2fa/complete", json={"tempSession": temp_session, "token": next_code(setup.secret)})


def test_disable_succes(client, make_user, db):
    user = make_user()
    _login_with_2fa(client, db, user)

    response = client.request("DELETE", "/api/auth/2fa", json={"password": PASSWORD},
                              headers=csrf_headers(client))

    assert response.status_code == 200
    db.expire_all()
    assert db.get(User, user.id).two_factor_enabled is False


def test_disable_sans_csrf(client, make_user, db):
    user = make_user()
    _login_with_2fa(client, db, user)

    response = client.request("DELETE", "/api/auth/2fa", json={"password": PASSWORD})

    assert response.status_code == 403
    db.expire_all()
    assert db.get(User, user.id).two_factor_enabled is True


def test_disable_mauvais_mot_de_passe(client, make_user, db):
    user = make_user()
    _login_with_2fa(client, db, user)

    response = client.request("DELETE", "/api/auth/2fa", json={"password": "Mauvais123!"},
                              headers=csrf_headers(client))

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid password"
