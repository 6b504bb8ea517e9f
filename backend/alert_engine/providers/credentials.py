"""Provider credential encryption.

API keys are stored encrypted with Fernet (AES-128-CBC) using a key derived
from SECRET_KEY.
"""

import base64
import hashlib

from cryptography.fernet import Fernet

from ..config import settings


def _derive_fernet_key(secret: str) -> bytes:
    """Derive a Fernet key from the app SECRET_KEY using SHA-256."""
    digest = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(digest)


def encrypt_value(plaintext: str) -> str:
    f = Fernet(_derive_fernet_key(settings.secret_key))
    return f.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    f = Fernet(_derive_fernet_key(settings.secret_key))
    return f.decrypt(ciphertext.encode()).decode()
