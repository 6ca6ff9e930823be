from typing import Optional

from cryptography.fernet import Fernet

from webhook_scheduler.config import settings


def get_fernet_key():
    """Returns the Fernet key from settings."""
    return Fernet(settings.encryption_key.encode('utf-8'))


def encrypt_data(data: str) -> str:
    """Encrypts a string using Fernet."""
    f = get_fernet_key()
    return f.encrypt(data.encode('utf-8')).decode('utf-8')


def decrypt_data(encrypted_data: str) -> str:
    """Decrypts a string using Fernet. Raises cryptography.fernet.InvalidToken on tampering."""
    f = get_fernet_key()
    return f.decrypt(encrypted_data.encode('utf-8')).decode('utf-8')


def mask_webhook_url(url: Optional[str]) -> Optional[str]:
    """Hide the webhook token: 'https://host/api/webhooks/123/abc' -> '.../123/********'."""
    if not url:
        return url
    head, sep, _token = url.rstrip("/").rpartition("/")
    if not sep or head.endswith("/webhooks"):
        return url
    return f"{head}/********"
