"""
Unit tests for per-organization credential encryption.

Each organization has its own derived Fernet key, so ciphertext written for
one organization must not decrypt under another's key.
"""
import uuid

import pytest

from app.core.encryption import (
    OrganizationKeyProvider,
    decrypt,
    encrypt,
    get_key_provider,
    is_current,
    reset_key_cache,
    rotate,
)
from app.core.exceptions import CredentialError, DecryptionError

SECRET = "unit-test-secret-key-that-is-long-enough"


class TestOrganizationKeyProvider:
    """Test key derivation."""

    def test_same_org_gets_same_key(self):
        provider = OrganizationKeyProvider(SECRET)
        org = uuid.uuid4()

        assert provider.get_key(org) == provider.get_key(str(org))

    def test_keys_differ_between_organizations(self):
        provider = OrganizationKeyProvider(SECRET)

        assert provider.get_key(uuid.uuid4()) != provider.get_key(uuid.uuid4())

    def test_keys_are_deterministic_across_providers(self):
        org = uuid.uuid4()

        assert OrganizationKeyProvider(SECRET).get_key(org) == OrganizationKeyProvider(SECRET).get_key(org)

    def test_keys_depend_on_secret(self):
        org = uuid.uuid4()

        assert OrganizationKeyProvider(SECRET).get_key(org) != OrganizationKeyProvider(SECRET + "x").get_key(org)

    def test_missing_secret_raises(self):
        with pytest.raises(ValueError, match="SECRET_KEY must be set"):
            OrganizationKeyProvider("").get_key(uuid.uuid4())


class TestEncryption:
    """Test encryption and decryption of credential documents."""

    def setup_method(self):
        reset_key_cache()
        self.provider = OrganizationKeyProvider(SECRET)

    def test_encrypt_decrypt_roundtrip(self):
        key = self.provider.get_key(uuid.uuid4())
        document = '{"api_key": "FAKE_KEY_FOR_TESTS"}'

        ciphertext = encrypt(document, key)

        assert ciphertext != document
        assert decrypt(ciphertext, key) == document

    def test_same_plaintext_produces_different_ciphertext(self):
        key = self.provider.get_key(uuid.uuid4())

        first = encrypt("same", key)
        second = encrypt("same", key)

        assert first != second
        assert decrypt(first, key) == decrypt(second, key) == "same"

    def test_other_organization_cannot_decrypt(self):
        ciphertext = encrypt("secret value", self.provider.get_key(uuid.uuid4()))

        with pytest.raises(DecryptionError, match="Failed to decrypt credentials"):
            decrypt(ciphertext, self.provider.get_key(uuid.uuid4()))

    def test_tampered_ciphertext_raises(self):
        key = self.provider.get_key(uuid.uuid4())
        ciphertext = encrypt("secret value", key)
        tampered = ciphertext[:-4] + ("AAAA" if not ciphertext.endswith("AAAA") else "BBBB")

        with pytest.raises(DecryptionError):
            decrypt(tampered, key)

    def test_decryption_error_is_a_credential_error(self):
        assert issubclass(DecryptionError, CredentialError)

    def test_encrypt_empty_string_raises_error(self):
        with pytest.raises(ValueError, match="Cannot encrypt empty value"):
            encrypt("", self.provider.get_key(uuid.uuid4()))

    def test_decrypt_empty_string_raises_error(self):
        with pytest.raises(DecryptionError, match="Cannot decrypt empty value"):
            decrypt("  ", self.provider.get_key(uuid.uuid4()))

    def test_default_provider_uses_settings_secret(self):
        org = uuid.uuid4()
        keys = get_key_provider()

        ciphertext = encrypt("hello", keys.get_key(org))

        assert decrypt(ciphertext, keys.get_keys(org)) == "hello"
        with pytest.raises(DecryptionError):
            decrypt(ciphertext, keys.get_keys(uuid.uuid4()))


OLD_SECRET = "previous-unit-test-secret-key-long-enough"


class TestKeyVersions:
    """Test decryption under previous secrets and re-encryption under the current one."""

    def setup_method(self):
        self.org = uuid.uuid4()
        self.old_key = OrganizationKeyProvider(OLD_SECRET, []).get_key(self.org)
        self.provider = OrganizationKeyProvider(SECRET, [OLD_SECRET])

    def test_current_key_first(self):
        keys = self.provider.get_keys(self.org)

        assert keys == [self.provider.get_key(self.org), self.old_key]

    def test_current_secret_not_repeated(self):
        provider = OrganizationKeyProvider(SECRET, [SECRET, "", OLD_SECRET])

        assert len(provider.get_keys(self.org)) == 2

    def test_previous_secrets_read_from_settings(self, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "previous_secret_keys", f'["{OLD_SECRET}"]')

        assert OrganizationKeyProvider(SECRET).get_keys(self.org)[1] == self.old_key

    def test_decrypt_with_previous_key(self):
        ciphertext = encrypt("legacy", self.old_key)

        assert decrypt(ciphertext, self.provider.get_keys(self.org)) == "legacy"
        with pytest.raises(DecryptionError):
            decrypt(ciphertext, self.provider.get_key(self.org))

    def test_rotate_moves_token_to_current_key(self):
        current = self.provider.get_key(self.org)
        ciphertext = encrypt("legacy", self.old_key)
        assert not is_current(ciphertext, current)

        rotated = rotate(ciphertext, self.provider.get_keys(self.org))

        assert is_current(rotated, current)
        assert decrypt(rotated, current) == "legacy"

    def test_rotate_unknown_key_raises(self):
        stranger = encrypt("foreign", OrganizationKeyProvider(SECRET).get_key(uuid.uuid4()))

        with pytest.raises(DecryptionError, match="no configured key"):
            rotate(stranger, self.provider.get_keys(self.org))

    def test_is_current_rejects_garbage(self):
        assert not is_current("not-a-token", self.provider.get_key(self.org))
