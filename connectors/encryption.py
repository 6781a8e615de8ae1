"""
Token encryption — encrypt / decrypt TikTok tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key comes from ``Settings.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).

If no key is configured, encryption is **disabled** and tokens are stored
as plaintext (with a startup warning).  A key that is set but malformed
is a ``ConfigurationError``.  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


class TokenCipher:
    """Symmetric cipher for access / refresh tokens stored in the database."""

    def __init__(self, key: str = "") -> None:
        self._fernet: Optional[Fernet] = None
        if not key:
            logger.warning(
                "TOKEN_ENCRYPTION_KEY not set, TikTok tokens will be stored as plaintext."
            )
            return
        try:
            self._fernet = Fernet(key.encode())
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(
                ["token_encryption_key"],
                reason="not a valid Fernet key (32 url-safe base64-encoded bytes)",
            ) from exc
        logger.info("Token encryption enabled (Fernet/AES-128-CBC)")

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None or self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """
        Tokens written before encryption was enabled are not valid Fernet
        tokens and are returned as-is.  So is a token sealed under a
        different key, which the provider will then reject.
        """
        if ciphertext is None or self._fernet is None:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.warning(
                "Stored token is not decryptable with the current key; using it as stored"
            )
            return ciphertext
