"""
Fernet encryption for panel passwords stored in the database
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

_FALLBACK_SECRET = 'default-key-change-in-production'


class CredentialCipher:
    """Symmetric cipher for credentials at rest"""

    def __init__(self, secret: Optional[str] = None):
        if not secret:
            logger.warning("⚠️ DATABASE_ENCRYPTION_KEY not set - using fallback key for stored panel passwords")
            secret = _FALLBACK_SECRET
        # Fernet needs a 32-byte urlsafe key; derive one from the configured secret
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())
        self.cipher = Fernet(key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None:
            return None
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if token is None:
            return None
        try:
            return self.cipher.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("❌ Failed to decrypt stored credential - encryption key changed?")
            raise
