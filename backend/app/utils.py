"""
Petits utilitaires partagés par les services d'authentification.
"""

import hashlib
from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Horodatage UTC naïf.
    Les colonnes DateTime sont stockées sans fuseau (SQLite ne le conserve pas),
    toutes les comparaisons se font donc en UTC naïf.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def hash_token(raw: str) -> str:
    """Empreinte SHA-256 d'un jeton opaque : seule l'empreinte est persistée."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
