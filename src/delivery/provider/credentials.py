"""Encryption of provider credential bundles at rest (Fernet)."""

import json

from cryptography.fernet import Fernet, InvalidToken

from delivery.errors import ProviderNotConfigured


class CredentialCipher:
    """Encrypts a tenant's credential bundle (a JSON object) into an opaque token."""

    def __init__(self, key: str | bytes):
        self._fernet = Fernet(key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, credentials: dict) -> str:
        payload = json.dumps(credentials, sort_keys=True).encode("utf-8")
        return self._fernet.encrypt(payload).decode("ascii")

    def decrypt(self, token: str, provider: str | None = None) -> dict:
        try:
            payload = self._fernet.decrypt(token.encode("ascii"))
        except InvalidToken:
            raise ProviderNotConfigured(
                "Stored credentials cannot be decrypted with the configured key",
                provider=provider,
            ) from None
        return json.loads(payload)

    def __repr__(self) -> str:
        return "CredentialCipher(<redacted>)"
