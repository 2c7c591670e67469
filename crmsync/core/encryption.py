"""Encryption utilities for connection secrets stored at rest."""

from cryptography.fernet import Fernet, InvalidToken

from crmsync.core.config import settings


_fernet: Fernet | None = None
_ENCRYPTED_PREFIX = "enc:"


def get_fernet() -> Fernet:
    """Get or create Fernet instance for encryption/decryption."""
    global _fernet
    if _fernet is None:
        if not settings.FERNET_KEY:
            raise RuntimeError(
                "FERNET_KEY not configured. "
                'Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        _fernet = Fernet(settings.FERNET_KEY.encode())
    return _fernet


def is_encrypted(value: str | None) -> bool:
    return bool(value) and value.startswith(_ENCRYPTED_PREFIX)


def encrypt_secret(value: str) -> str:
    """Encrypt a secret for storage. Already-encrypted values pass through."""
    if not value:
        return ""
    if is_encrypted(value):
        return value
    encrypted = get_fernet().encrypt(value.encode()).decode()
    return f"{_ENCRYPTED_PREFIX}{encrypted}"


def decrypt_secret(value: str) -> str:
    """
    Decrypt a stored secret.

    Values without the prefix predate encryption and are returned as-is.
    """
    if not value:
        return ""
    if not is_encrypted(value):
        return value
    token = value[len(_ENCRYPTED_PREFIX) :]
    try:
        return get_fernet().decrypt(token.encode()).decode()
    except InvalidToken:
        raise ValueError("Invalid or corrupted encrypted secret")
