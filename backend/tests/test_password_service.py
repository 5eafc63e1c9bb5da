"""
Tests unitaires pour le hachage et la robustesse des mots de passe.
"""

import pytest

from app.exceptions import PasswordHashError, ValidationFailed
from app.services.password_service import hash_password, validate_password_strength, verify_password


# --- hash_password / verify_password ---

def test_hash_puis_verification_succes():
    h = hash_password("Password123!")
    assert h.startswith("$2")
    assert verify_password("Password123!", h) is True


def test_mauvais_mot_de_passe_refuse():
    h = hash_password("Password123!")
    assert verify_password("Password124!", h) is False


def test_hash_sale_differemment():
    assert hash_password("Password123!") != hash_password("Password123!")


def test_mot_de_passe_au_dela_de_72_octets_jamais_tronque():
    """Deux mots de passe identiques sur 72 octets mais différents ensuite ne se confondent pas."""
    base = "A1!" + "x" * 69
    h = hash_password(base)
    assert verify_password(base, h) is True
    assert verify_password(base + "suffixe", h) is False


def test_hash_refuse_plus_de_72_octets():
    with pytest.raises(ValidationFailed):
        hash_password("A1!" + "x" * 70)


def test_empreinte_malformee_leve_erreur():
    with pytest.raises(PasswordHashError):
        verify_password("Password123!", "pas-une-empreinte-bcrypt")


# --- validate_password_strength ---

def test_mot_de_passe_robuste_accepte():
    assert validate_password_strength("Password123!") == []


def test_mot_de_passe_trop_court():
    errors = validate_password_strength("Pa1!")
    assert "Password must be at least 8 characters long" in errors


def test_mot_de_passe_sans_majuscule():
    errors = validate_password_strength("password123!")
    assert "Password must contain at least one uppercase letter" in errors


def test_mot_de_passe_sans_caractere_special():
    errors = validate_password_strength("Password123")
    assert "Password must contain at least one special character" in errors


def test_caractere_repete_juge_faible():
    errors = validate_password_strength("Paaaaa123!")
    assert "Password is too weak or common" in errors


def test_mot_de_passe_trop_long():
    errors = validate_password_strength("Aa1!" + "bc" * 40)
    assert "Password must be at most 72 bytes" in errors


def test_limite_comptee_en_octets():
    """40 caractères accentués font 80 octets en UTF-8."""
    errors = validate_password_strength("Aa1!" + "éè" * 20)
    assert "Password must be at most 72 bytes" in errors
    assert validate_password_strength("Aa1!" + "éè" * 10) == []
