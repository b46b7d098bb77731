"""
Credential vault.

Stores integration credentials encrypted with the owning organization's key.
A credential belongs to exactly one scope: an organization or one widget
instance. Widget-scoped credentials are encrypted with the key of the
organization that owns the widget instance.

Plaintext only exists inside resolve() results, which callers hand straight
to a fetcher and drop afterwards.
"""
import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.config import settings
from app.core.database import get_session_context
from app.core.encryption import OrganizationKeyProvider, decrypt, encrypt, get_key_provider, is_current, rotate
from app.core.exceptions import CredentialError, DecryptionError, WidgetInstanceNotFoundError
from app.core.logging_config import log_error, log_info, log_warning
from app.core.time_utils import Clock, utc_now
from app.integrations.discriminator import Discriminator
from app.integrations.field_schema import parse_credential_schema, validate_values
from app.models.credential import IntegrationCredential
from app.models.enums import AuthType, CredentialScope
from app.models.integration import IntegrationDefinition
from app.models.widget_instance import WidgetInstance

SENSITIVE_METADATA_RE = re.compile(r"password|secret|key|token", re.IGNORECASE)


def filter_metadata(credentials: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop every field whose name looks sensitive."""
    return {
        name: value
        for name, value in (credentials or {}).items()
        if not SENSITIVE_METADATA_RE.search(str(name))
    }


@dataclass
class ResolvedCredentials:
    """Decrypted credential values for a single fetch."""
    credential_id: Optional[uuid.UUID]
    values: Dict[str, Any] = field(default_factory=dict, repr=False)
    is_valid: bool = True


@dataclass
class RotationBatch:
    """Outcome of re-encrypting one batch of stored credentials."""
    scanned: int = 0
    rotated: int = 0
    skipped: int = 0
    errors: int = 0
    last_id: Optional[uuid.UUID] = None
    done: bool = True

    def merge(self, other: "RotationBatch") -> None:
        self.scanned += other.scanned
        self.rotated += other.rotated
        self.skipped += other.skipped
        self.errors += other.errors
        self.last_id = other.last_id or self.last_id
        self.done = other.done


class CredentialVault:
    """Encrypted credential storage scoped to organizations and widget instances."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session_context,
        key_provider: Optional[OrganizationKeyProvider] = None,
        clock: Clock = utc_now,
    ):
        self._session_factory = session_factory
        self._keys = key_provider or get_key_provider()
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_scope(
        integration: IntegrationDefinition,
        organization_id: Optional[uuid.UUID],
        widget_instance_id: Optional[uuid.UUID],
    ) -> None:
        if (organization_id is None) == (widget_instance_id is None):
            raise CredentialError("Exactly one of organization_id or widget_instance_id must be provided")
        scope = CredentialScope(integration.credential_scope)
        if scope == CredentialScope.ORGANIZATION and organization_id is None:
            raise CredentialError("This integration stores credentials per organization")
        if scope == CredentialScope.WIDGET and widget_instance_id is None:
            raise CredentialError("This integration stores credentials per widget instance")

    @staticmethod
    def _owner_organization(session: Session, credential: IntegrationCredential) -> uuid.UUID:
        if credential.organization_id is not None:
            return credential.organization_id
        instance = session.get(WidgetInstance, credential.widget_instance_id)
        if instance is None:
            raise WidgetInstanceNotFoundError(f"Widget instance {credential.widget_instance_id} not found")
        return instance.organization_id

    @staticmethod
    def _select(
        session: Session,
        integration_id: uuid.UUID,
        organization_id: Optional[uuid.UUID] = None,
        widget_instance_id: Optional[uuid.UUID] = None,
    ) -> Optional[IntegrationCredential]:
        statement = select(IntegrationCredential).where(IntegrationCredential.integration_id == integration_id)
        if widget_instance_id is not None:
            statement = statement.where(IntegrationCredential.widget_instance_id == widget_instance_id)
        else:
            statement = statement.where(IntegrationCredential.organization_id == organization_id)
        return session.exec(statement).first()

    def _encrypt_values(self, organization_id: uuid.UUID, values: Dict[str, Any]) -> str:
        return encrypt(json.dumps(values), self._keys.get_key(organization_id))

    def _decrypt_values(self, organization_id: uuid.UUID, ciphertext: str) -> Dict[str, Any]:
        plaintext = decrypt(ciphertext, self._keys.get_keys(organization_id))
        try:
            values = json.loads(plaintext)
        except ValueError as e:
            raise CredentialError("Stored credentials are not valid JSON") from e
        if not isinstance(values, dict):
            raise CredentialError("Stored credentials must be an object")
        return values

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store_credentials(
        self,
        integration: IntegrationDefinition,
        credentials: Dict[str, Any],
        organization_id: Optional[uuid.UUID] = None,
        widget_instance_id: Optional[uuid.UUID] = None,
    ) -> IntegrationCredential:
        """
        Validate, encrypt and upsert credentials for one scope.

        Raises:
            CredentialError: If both or neither scope is given, or the scope
                does not match the integration's credential_scope
            SchemaValidationError: If values do not match credential_schema
            WidgetInstanceNotFoundError: If the widget instance does not exist
        """
        self._check_scope(integration, organization_id, widget_instance_id)
        schema = parse_credential_schema(integration.credential_schema)
        values = validate_values(schema.fields, credentials)

        for _ in range(2):
            with self._session_factory() as session:
                owner_org = organization_id
                if widget_instance_id is not None:
                    instance = session.get(WidgetInstance, widget_instance_id)
                    if instance is None:
                        raise WidgetInstanceNotFoundError(f"Widget instance {widget_instance_id} not found")
                    owner_org = instance.organization_id

                credential = self._select(session, integration.id, organization_id, widget_instance_id)
                now = self._clock()
                if credential is None:
                    credential = IntegrationCredential(
                        integration_id=integration.id,
                        organization_id=organization_id,
                        widget_instance_id=widget_instance_id,
                        encrypted_credentials="",
                    )
                credential.encrypted_credentials = self._encrypt_values(owner_org, values)
                credential.credential_metadata = filter_metadata(values)
                credential.validated_at = now
                credential.is_valid = True
                credential.touch(now)
                session.add(credential)
                try:
                    session.commit()
                except IntegrityError:
                    # Another writer created the row first; update it instead
                    session.rollback()
                    continue
                except SQLAlchemyError as e:
                    session.rollback()
                    log_error(e, integration_id=str(integration.id))
                    raise
                session.refresh(credential)
                log_info(
                    "Credentials stored",
                    integration_id=str(integration.id),
                    organization_id=str(organization_id) if organization_id else None,
                    widget_instance_id=str(widget_instance_id) if widget_instance_id else None,
                )
                return credential
        raise CredentialError("Credentials were modified concurrently, please retry")

    def stage_rotation(self, session: Session, credential_id: uuid.UUID, new_values: Dict[str, Any]) -> None:
        """
        Re-encrypt rotated credentials inside a caller-owned transaction.

        The caller commits, so the rotation lands together with its data write.
        """
        credential = session.get(IntegrationCredential, credential_id)
        if credential is None:
            raise CredentialError(f"Credential {credential_id} not found")
        owner_org = self._owner_organization(session, credential)
        credential.encrypted_credentials = self._encrypt_values(owner_org, new_values)
        credential.credential_metadata = filter_metadata(new_values)
        credential.touch(self._clock())
        session.add(credential)

    def stage_invalidation(self, session: Session, credential_id: uuid.UUID) -> None:
        credential = session.get(IntegrationCredential, credential_id)
        if credential is None:
            return
        credential.is_valid = False
        credential.touch(self._clock())
        session.add(credential)

    def mark_invalid(self, credential_id: uuid.UUID) -> None:
        with self._session_factory() as session:
            self.stage_invalidation(session, credential_id)
            session.commit()
        log_warning("Credential marked invalid", credential_id=str(credential_id))

    def delete_credentials(
        self,
        integration_id: uuid.UUID,
        organization_id: Optional[uuid.UUID] = None,
        widget_instance_id: Optional[uuid.UUID] = None,
    ) -> bool:
        if (organization_id is None) == (widget_instance_id is None):
            raise CredentialError("Exactly one of organization_id or widget_instance_id must be provided")
        with self._session_factory() as session:
            credential = self._select(session, integration_id, organization_id, widget_instance_id)
            if credential is None:
                return False
            session.delete(credential)
            session.commit()
        log_info("Credentials deleted", integration_id=str(integration_id))
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_credential(
        self,
        integration_id: uuid.UUID,
        organization_id: Optional[uuid.UUID] = None,
        widget_instance_id: Optional[uuid.UUID] = None,
    ) -> Optional[IntegrationCredential]:
        with self._session_factory() as session:
            return self._select(session, integration_id, organization_id, widget_instance_id)

    def is_valid(self, credential_id: uuid.UUID) -> bool:
        with self._session_factory() as session:
            credential = session.get(IntegrationCredential, credential_id)
            return credential is not None and credential.is_valid

    def load_values(
        self,
        integration_id: uuid.UUID,
        organization_id: Optional[uuid.UUID] = None,
        widget_instance_id: Optional[uuid.UUID] = None,
    ) -> Optional[Dict[str, Any]]:
        """Decrypt the stored values for a scope, or None when nothing is stored."""
        with self._session_factory() as session:
            credential = self._select(session, integration_id, organization_id, widget_instance_id)
            if credential is None:
                return None
            return self._decrypt_values(self._owner_organization(session, credential), credential.encrypted_credentials)

    def resolve(self, integration: IntegrationDefinition, discriminator: Discriminator) -> ResolvedCredentials:
        """
        Decrypt the credential that applies to a discriminator.

        Raises:
            CredentialError: If no credential is stored and the integration
                needs one, or the stored ciphertext cannot be decrypted
        """
        scope = CredentialScope(integration.credential_scope)
        with self._session_factory() as session:
            if scope == CredentialScope.WIDGET:
                credential = (
                    self._select(session, integration.id, widget_instance_id=discriminator.widget_instance_id)
                    if discriminator.widget_instance_id
                    else None
                )
            else:
                credential = (
                    self._select(session, integration.id, organization_id=discriminator.organization_id)
                    if discriminator.organization_id
                    else None
                )

            if credential is None:
                if AuthType(integration.auth_type) == AuthType.NONE:
                    return ResolvedCredentials(credential_id=None, values={})
                raise CredentialError(f"No credentials stored for integration {integration.id}")

            values = self._decrypt_values(self._owner_organization(session, credential), credential.encrypted_credentials)
            return ResolvedCredentials(credential_id=credential.id, values=values, is_valid=credential.is_valid)

    # ------------------------------------------------------------------
    # Key rotation
    # ------------------------------------------------------------------

    def rotate_batch(self, batch_size: Optional[int] = None, after_id: Optional[uuid.UUID] = None) -> RotationBatch:
        """
        Re-encrypt up to batch_size credentials under their organization's current key.

        Rows are walked in id order starting after ``after_id``. Rows already
        on the current key are skipped; rows no configured key can decrypt are
        counted as errors and left untouched.
        """
        batch_size = batch_size or settings.credential_rotation_batch_size
        result = RotationBatch()
        with self._session_factory() as session:
            statement = select(IntegrationCredential)
            if after_id is not None:
                statement = statement.where(IntegrationCredential.id > after_id)
            statement = statement.order_by(IntegrationCredential.id).limit(batch_size)

            for credential in session.exec(statement).all():
                result.scanned += 1
                result.last_id = credential.id
                try:
                    keys = self._keys.get_keys(self._owner_organization(session, credential))
                    if is_current(credential.encrypted_credentials, keys[0]):
                        result.skipped += 1
                        continue
                    credential.encrypted_credentials = rotate(credential.encrypted_credentials, keys)
                except (DecryptionError, WidgetInstanceNotFoundError) as e:
                    result.errors += 1
                    log_warning("Credential could not be re-encrypted", credential_id=str(credential.id), error=str(e))
                    continue
                credential.touch(self._clock())
                session.add(credential)
                result.rotated += 1

            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                log_error(e, action="credential_rotation")
                raise

        result.done = result.scanned < batch_size
        log_info(
            "Credential rotation batch finished",
            scanned=result.scanned,
            rotated=result.rotated,
            skipped=result.skipped,
            errors=result.errors,
        )
        return result

    def rotate_all(self, batch_size: Optional[int] = None) -> RotationBatch:
        """Run rotate_batch until every stored credential was visited."""
        total = RotationBatch()
        batch = self.rotate_batch(batch_size)
        total.merge(batch)
        while not batch.done:
            batch = self.rotate_batch(batch_size, after_id=batch.last_id)
            total.merge(batch)
        return total

    def rotation_stats(self) -> Dict[str, int]:
        """Count stored credentials by the key version that decrypts them."""
        stats = {"current": 0, "outdated": 0, "unreadable": 0, "total": 0}
        with self._session_factory() as session:
            for credential in session.exec(select(IntegrationCredential)).all():
                stats["total"] += 1
                try:
                    keys = self._keys.get_keys(self._owner_organization(session, credential))
                except WidgetInstanceNotFoundError:
                    stats["unreadable"] += 1
                    continue
                if is_current(credential.encrypted_credentials, keys[0]):
                    stats["current"] += 1
                elif any(is_current(credential.encrypted_credentials, key) for key in keys[1:]):
                    stats["outdated"] += 1
                else:
                    stats["unreadable"] += 1
        return stats
