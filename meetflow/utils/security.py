"""
Security utilities for webhook signatures, JWT, and token encryption
"""

import base64
import hashlib
import hmac
import time
from datetime import timedelta
from typing import Optional, Dict, Any

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from ..config import Settings
from .helpers import utc_now

HEX_SHA256_PROVIDERS = {"aircall", "ringcentral", "justcall", "kixie"}


class SecurityManager:
    """Handle signatures, JWT, and encryption of provider credentials"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.fernet = Fernet(settings.encryption_key.encode()) if settings.encryption_key else None

    def encrypt_data(self, data: str) -> str:
        """Encrypt sensitive data"""
        if not self.fernet:
            raise ValueError("Encryption key not configured")
        return self.fernet.encrypt(data.encode()).decode()

    def decrypt_data(self, encrypted_data: str) -> Optional[str]:
        """Decrypt sensitive data, None when the token cannot be read"""
        if not self.fernet:
            return None
        try:
            return self.fernet.decrypt(encrypted_data.encode()).decode()
        except InvalidToken:
            return None

    def create_access_token(
        self,
        data: Dict[str, Any],
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """Create JWT access token"""
        to_encode = data.copy()
        expire = utc_now() + (expires_delta or timedelta(hours=24))
        to_encode.update({"exp": expire})

        return jwt.encode(to_encode, self.settings.secret_key, algorithm="HS256")

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify and decode JWT token"""
        try:
            return jwt.decode(token, self.settings.secret_key, algorithms=["HS256"])
        except JWTError:
            return None

    @staticmethod
    def expected_signature(provider: str, payload: bytes, secret: str) -> str:
        """Signature a provider would send for this raw body"""
        if provider in HEX_SHA256_PROVIDERS:
            return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        if provider == "twilio":
            digest = hmac.new(secret.encode(), payload, hashlib.sha1).digest()
            return base64.b64encode(digest).decode()
        # "other" dialers echo the shared secret
        return secret

    def verify_webhook_signature(
        self,
        provider: str,
        payload: bytes,
        signature: Optional[str],
        secret: Optional[str]
    ) -> bool:
        """Verify webhook signature in constant time"""
        if not signature or not secret:
            return False

        expected = self.expected_signature(provider, payload, secret)
        return hmac.compare_digest(signature.encode(), expected.encode())

    def sign_storage_path(self, path: str, expires_at: int) -> str:
        """HMAC token for a local storage download link"""
        message = f"{path}:{expires_at}".encode()
        return hmac.new(self.settings.secret_key.encode(), message, hashlib.sha256).hexdigest()

    def verify_storage_signature(self, path: str, expires_at: int, token: str) -> bool:
        if expires_at < int(time.time()):
            return False
        return hmac.compare_digest(token.encode(), self.sign_storage_path(path, expires_at).encode())
