"""
Moteur TOTP (RFC 6238) et codes de secours.

Points clés :
- codes à 6 chiffres, pas de 30 secondes, HMAC-SHA1 (compatible Google Authenticator, Authy, Aegis)
- secret base32 de 160 bits
- tolérance de ±1 pas pour la dérive d'horloge
- anti-rejeu : un pas déjà accepté (ou antérieur) est refusé
- codes de secours : 8 caractères [A-Z0-9], stockés sous forme d'empreinte SHA-256
"""

import base64
import hmac
import io
import re
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import List, Optional

import pyotp
import qrcode

from app.config import settings
from app.utils import hash_token

TOTP_INTERVAL = 30
TOTP_DIGITS = 6
TOTP_DRIFT_STEPS = 1
BACKUP_CODE_LENGTH = 8
BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits

TOTP_CODE_RE = re.compile(r"^\d{6}$")
BACKUP_CODE_RE = re.compile(r"^[A-Z0-9]{8}$")


@dataclass
class TotpSetup:
    secret: str
    otpauth_uri: str
    qr_code_data_url: str


@dataclass
class TotpVerification:
    valid: bool
    step_used: Optional[int] = None


@dataclass
class BackupCodeVerification:
    valid: bool
    remaining_codes: List[str] = field(default_factory=list)


def generate_secret(account_name: str) -> TotpSetup:
    """Nouveau secret (base32, 160 bits) avec son URI otpauth:// et le QR code correspondant."""
    secret = pyotp.random_base32(length=32)
    uri = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).provisioning_uri(
        name=account_name, issuer_name=settings.TOTP_ISSUER
    )
    return TotpSetup(secret=secret, otpauth_uri=uri, qr_code_data_url=generate_qr_data_url(uri))


def generate_qr_data_url(payload: str) -> str:
    """Image PNG du QR code encodée en data URL (affichable directement dans un <img>)."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def current_step(for_time: Optional[float] = None) -> int:
    return int((time.time() if for_time is None else for_time) // TOTP_INTERVAL)


def verify_token(
    code: str,
    secret: str,
    last_used_step: Optional[int] = None,
    for_time: Optional[float] = None,
) -> TotpVerification:
    """
    Vérifie un code à 6 chiffres sur le pas courant et ses voisins (±1).
    Un pas <= last_used_step est refusé même si le code correspond.
    L'appelant persiste step_used pour bloquer le rejeu du même code.
    """
    if not secret or not code:
        return TotpVerification(valid=False)
    code = code.strip().replace(" ", "")
    if not TOTP_CODE_RE.match(code):
        return TotpVerification(valid=False)

    try:
        totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
        now_step = current_step(for_time)
        for step in range(now_step - TOTP_DRIFT_STEPS, now_step + TOTP_DRIFT_STEPS + 1):
            if last_used_step is not None and step <= last_used_step:
                continue
            if hmac.compare_digest(totp.generate_otp(step), code):
                return TotpVerification(valid=True, step_used=step)
    except (TypeError, ValueError):
        # secret base32 corrompu
        return TotpVerification(valid=False)
    return TotpVerification(valid=False)


def generate_backup_codes(count: Optional[int] = None) -> List[str]:
    """Codes de secours en clair : retournés une seule fois à l'utilisateur."""
    count = settings.BACKUP_CODE_COUNT if count is None else count
    return [
        "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
        for _ in range(count)
    ]


def hash_backup_code(code: str) -> str:
    return hash_token(code)


def verify_backup_code(code: str, stored_digests: Optional[List[str]]) -> BackupCodeVerification:
    """
    Correspondance exacte (sensible à la casse) contre les empreintes stockées.
    En cas de succès, remaining_codes contient les empreintes restantes
    (sans le code consommé) : l'appelant les persiste.
    """
    stored = list(stored_digests or [])
    if not code or not BACKUP_CODE_RE.match(code):
        return BackupCodeVerification(valid=False, remaining_codes=stored)

    digest = hash_backup_code(code)
    match_index = None
    for index, candidate in enumerate(stored):
        if hmac.compare_digest(candidate, digest) and match_index is None:
            match_index = index

    if match_index is None:
        return BackupCodeVerification(valid=False, remaining_codes=stored)
    return BackupCodeVerification(
        valid=True,
        remaining_codes=[c for i, c in enumerate(stored) if i != match_index],
    )


def get_current_code(secret: str, for_time: Optional[float] = None) -> str:
    """
    Code TOTP courant pour un secret.
    Utile pour les tests uniquement, ne jamais exposer en production !
    """
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).generate_otp(current_step(for_time))
