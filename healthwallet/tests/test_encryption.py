import pytest
from cryptography.fernet import InvalidToken

from healthwallet.utils.encryption import decrypt_text, decrypted, encrypt_text


def test_token_hides_plaintext():
    token = encrypt_text("Vitamin D 24 ng/mL")
    assert "Vitamin" not in token
    assert decrypt_text(token) == "Vitamin D 24 ng/mL"


def test_tokens_are_not_deterministic():
    assert encrypt_text("same") != encrypt_text("same")


def test_tampered_token_is_rejected():
    token = encrypt_text("secret")
    with pytest.raises(InvalidToken):
        decrypt_text(token[:-4] + "AAAA")


def test_decrypted_scope():
    token = encrypt_text("lab text")
    with decrypted(token) as plaintext:
        assert plaintext == "lab text"


def test_decrypted_requires_token():
    with pytest.raises(ValueError):
        with decrypted(None):
            pass


def test_parsed_data_is_encrypted_at_rest(db, pending_record):
    from sqlalchemy import text

    record_id = pending_record()
    raw = db.execute(text("SELECT parsed_data FROM health_records WHERE id = :id"), {"id": record_id}).scalar_one()
    assert "adapter" not in raw
