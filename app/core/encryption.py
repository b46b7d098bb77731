"""
Symmetric encryption utilities for integration credentials.

This module provides Fernet-based encryption for third-party credentials.
Credentials are encrypted per organization: each organization owns one
symmetric key, and widget-scoped credentials use the owning organization's
key.

Key Derivation:
- The default OrganizationKeyProvider uses HKDF with SHA256
- Derives a stable 32-byte Fernet key from the application's SECRET_KEY and
  the organization id, so keys differ between organizations
- Keys are deterministic (same SECRET_KEY + org id -> same Fernet key) so
  ciphertext remains decryptable across restarts

Key Rotation:
- Secrets listed in PREVIOUS_SECRET_KEYS derive older key versions for each
  organization. Decryption tries the current key first, then each old one
- New ciphertext is always written with the current key
- rotate() re-encrypts a token under the current key; run
  `widget-sync-admin credentials rotate` after changing SECRET_KEY, then drop
  the old secret from PREVIOUS_SECRET_KEYS

Security Notes:
- Ciphertext is AES-128-CBC + HMAC-SHA256 (via Fernet); a tampered token or a
  token encrypted under another organization's key fails authentication
- Changing SECRET_KEY without keeping the old one in PREVIOUS_SECRET_KEYS
  invalidates every stored credential
- Never log or expose decrypted credentials

Usage:
    from app.core.encryption import decrypt, encrypt, get_key_provider

    keys = get_key_provider()
    ciphertext = encrypt('{"api_key": "..."}', keys.get_key(org_id))
    plaintext = decrypt(ciphertext, keys.get_keys(org_id))
"""
import base64
import threading
import uuid
from typing import Dict, List, Optional, Sequence, Tuple, Union

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.core.config import settings
from app.core.exceptions import DecryptionError
from app.core.logging_config import log_error

_KEY_INFO_PREFIX = b'widget-sync-credential-encryption:'

OrgKeys = Union[bytes, Sequence[bytes]]


class OrganizationKeyProvider:
    """
    Resolves the symmetric keys owned by an organization.

    Key provisioning may live elsewhere (a KMS, a key table); this default
    derives keys from SECRET_KEY (and PREVIOUS_SECRET_KEYS for older
    versions) and caches them per organization.
    """

    def __init__(self, secret_key: Optional[str] = None, previous_secret_keys: Optional[List[str]] = None):
        self._secret_key = secret_key
        self._previous_secret_keys = previous_secret_keys
        self._cache: Dict[Tuple[str, str], bytes] = {}
        self._lock = threading.Lock()

    def _secret(self) -> str:
        secret = self._secret_key if self._secret_key is not None else settings.secret_key
        if not secret:
            raise ValueError(
                "SECRET_KEY must be set for encryption. "
                "Set it in your .env file or environment variables."
            )
        return secret

    def _previous_secrets(self) -> List[str]:
        if self._previous_secret_keys is not None:
            return [secret for secret in self._previous_secret_keys if secret]
        return settings.retired_secret_keys

    def _derive(self, secret: str, org: str) -> bytes:
        with self._lock:
            cached = self._cache.get((secret, org))
            if cached is not None:
                return cached

            # info parameter provides domain separation per organization
            kdf = HKDF(
                algorithm=hashes.SHA256(),
                length=32,  # Fernet requires exactly 32 bytes
                salt=None,  # SECRET_KEY is already high-entropy
                info=_KEY_INFO_PREFIX + org.encode('utf-8'),
            )
            key = base64.urlsafe_b64encode(kdf.derive(secret.encode('utf-8')))
            self._cache[(secret, org)] = key
            return key

    def get_key(self, organization_id: uuid.UUID | str) -> bytes:
        """Return the current URL-safe base64 Fernet key for an organization."""
        return self._derive(self._secret(), str(organization_id))

    def get_keys(self, organization_id: uuid.UUID | str) -> List[bytes]:
        """Return every key version for an organization, current key first."""
        org = str(organization_id)
        current = self._secret()
        keys = [self._derive(current, org)]
        for secret in self._previous_secrets():
            if secret != current:
                keys.append(self._derive(secret, org))
        return keys

    def reset(self) -> None:
        with self._lock:
            self._cache.clear()


_default_provider = OrganizationKeyProvider()


def get_key_provider() -> OrganizationKeyProvider:
    return _default_provider


def _fernet(org_keys: OrgKeys) -> MultiFernet:
    if isinstance(org_keys, bytes):
        org_keys = [org_keys]
    return MultiFernet([Fernet(key) for key in org_keys])


def encrypt(plaintext: str, org_key: bytes) -> str:
    """
    Encrypt plaintext with an organization key.

    Args:
        plaintext: The value to encrypt (usually a JSON document)
        org_key: Fernet key returned by OrganizationKeyProvider.get_key
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty value")

    try:
        return Fernet(org_key).encrypt(plaintext.encode('utf-8')).decode('utf-8')
    except Exception as e:
        log_error(e, action="credential_encryption")
        raise


def decrypt(ciphertext: str, org_keys: OrgKeys) -> str:
    """
    Decrypt a Fernet token produced by encrypt().

    Args:
        ciphertext: The stored token
        org_keys: One key, or every key version from OrganizationKeyProvider.get_keys

    Raises:
        DecryptionError: If the token was tampered with or encrypted under none of the keys
    """
    if not ciphertext or not ciphertext.strip():
        raise DecryptionError("Cannot decrypt empty value")

    try:
        return _fernet(org_keys).decrypt(ciphertext.encode('utf-8')).decode('utf-8')
    except InvalidToken as e:
        log_error(e, action="credential_decryption")
        raise DecryptionError(
            "Failed to decrypt credentials. The ciphertext is corrupted, belongs to "
            "another organization, or SECRET_KEY has changed. "
            "The integration may need to be reconnected."
        ) from e


def is_current(ciphertext: str, org_key: bytes) -> bool:
    """Return True if the token decrypts under the current key."""
    try:
        Fernet(org_key).decrypt(ciphertext.encode('utf-8'))
    except InvalidToken:
        return False
    return True


def rotate(ciphertext: str, org_keys: Sequence[bytes]) -> str:
    """
    Re-encrypt a token under the first (current) key.

    Raises:
        DecryptionError: If the token decrypts under none of the keys
    """
    if not ciphertext or not ciphertext.strip():
        raise DecryptionError("Cannot rotate empty value")

    try:
        return _fernet(org_keys).rotate(ciphertext.encode('utf-8')).decode('utf-8')
    except InvalidToken as e:
        log_error(e, action="credential_rotation")
        raise DecryptionError("Failed to re-encrypt credentials: no configured key decrypts them") from e


def reset_key_cache():
    """
    Reset the cached organization keys.

    This should only be called in tests or if SECRET_KEY changes at runtime.
    """
    _default_provider.reset()
