"""
Integration registry.

Holds the declarative definitions of how each widget type integrates with an
external service. Definitions are validated once on create (schemas, mode
specific fields, fetcher names) and are immutable afterwards except for the
active flag, so parsed schemas are cached per definition id.
"""
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.config import DEFAULT_SERVE_LIMITS, settings
from app.core.database import get_session_context
from app.core.exceptions import (
    IntegrationAlreadyExistsError,
    IntegrationNotFoundError,
    SchemaValidationError,
)
from app.core.logging_config import log_error, log_info
from app.integrations.fetchers import DEFAULT_FETCHER, Fetcher, FetcherRegistry
from app.integrations.field_schema import (
    CredentialSchema,
    FieldSpec,
    parse_credential_schema,
    parse_fields,
    validate_values,
)
from app.integrations.schemas import IntegrationCreate
from app.integrations.transform import PathError, validate_mapping
from app.integrations.webhooks import WEBHOOK_TRANSFORMS
from app.models.enums import CredentialScope, DiscriminatorType, IntegrationMode, WebhookAuthMethod
from app.models.integration import IntegrationDefinition


def _validate_serve_limits(pull_config: Dict[str, Any]) -> None:
    limits = pull_config.get("serve_limits")
    if limits is None:
        return
    if not isinstance(limits, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in limits.items()
    ):
        raise SchemaValidationError("pull_config.serve_limits must map list fields to option names")


def _validate_pull_fields(payload: IntegrationCreate, fetchers: FetcherRegistry) -> Dict[str, Any]:
    if payload.push_path or payload.push_config:
        raise SchemaValidationError("Pull integrations cannot declare push_path or push_config")

    interval = payload.pull_interval_seconds
    if interval is None:
        interval = settings.default_pull_interval_seconds
    if interval <= 0:
        raise SchemaValidationError("pull_interval_seconds must be greater than 0")

    fetcher = payload.fetcher
    if fetcher is None:
        if not payload.pull_endpoint:
            raise SchemaValidationError("Pull integrations need a fetcher or a pull_endpoint")
        fetcher = DEFAULT_FETCHER
    if fetcher not in fetchers:
        raise SchemaValidationError(
            f"Unknown fetcher '{fetcher}'. Registered fetchers: {', '.join(fetchers.names())}"
        )
    if fetcher == DEFAULT_FETCHER and not payload.pull_endpoint:
        raise SchemaValidationError("The json_api fetcher needs a pull_endpoint")

    pull_config = dict(payload.pull_config or {})
    if "mapping" in pull_config:
        try:
            validate_mapping(pull_config["mapping"])
        except PathError as e:
            raise SchemaValidationError(f"Invalid pull_config.mapping: {e}") from e
    _validate_serve_limits(pull_config)

    return {"fetcher": fetcher, "pull_interval_seconds": interval, "pull_config": pull_config}


def _validate_push_fields(payload: IntegrationCreate) -> Dict[str, Any]:
    if not payload.push_path:
        raise SchemaValidationError("Push integrations need a push_path")
    if payload.fetcher or payload.pull_endpoint or payload.pull_interval_seconds is not None:
        raise SchemaValidationError("Push integrations cannot declare fetcher, pull_endpoint or pull_interval_seconds")

    push_config = dict(payload.push_config or {})
    method = push_config.get("auth_method", WebhookAuthMethod.HMAC.value)
    try:
        push_config["auth_method"] = WebhookAuthMethod(method).value
    except ValueError as e:
        allowed = ", ".join(m.value for m in WebhookAuthMethod)
        raise SchemaValidationError(f"Unknown push_config.auth_method '{method}'. Allowed: {allowed}") from e

    if push_config["auth_method"] == WebhookAuthMethod.IP_ALLOWLIST.value and not push_config.get("allowed_ips"):
        raise SchemaValidationError("ip_allowlist authentication needs push_config.allowed_ips")

    transform = push_config.get("transform")
    if transform is not None and transform not in WEBHOOK_TRANSFORMS:
        raise SchemaValidationError(f"Unknown webhook transform '{transform}'")
    if "mapping" in push_config:
        try:
            validate_mapping(push_config["mapping"])
        except PathError as e:
            raise SchemaValidationError(f"Invalid push_config.mapping: {e}") from e

    return {
        "fetcher": None,
        "pull_endpoint": None,
        "pull_interval_seconds": None,
        "push_path": payload.push_path,
        "push_config": push_config,
    }


class IntegrationRegistry:
    """Create, look up and toggle integration definitions."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = get_session_context,
        fetchers: Optional[FetcherRegistry] = None,
    ):
        self._session_factory = session_factory
        self.fetchers = fetchers or FetcherRegistry()
        self._credential_schemas: Dict[uuid.UUID, CredentialSchema] = {}
        self._config_fields: Dict[uuid.UUID, Dict[str, FieldSpec]] = {}

    def create(self, payload: Union[IntegrationCreate, Dict[str, Any]]) -> IntegrationDefinition:
        """
        Validate and persist a new integration definition.

        Raises:
            SchemaValidationError: On invalid schemas or mode-specific fields
            IntegrationAlreadyExistsError: If (widget_type, name) is taken
        """
        if isinstance(payload, dict):
            payload = IntegrationCreate.model_validate(payload)

        parse_credential_schema(payload.credential_schema)
        config_fields = parse_fields(payload.config_schema)

        discriminator_type = DiscriminatorType(payload.discriminator_type)
        keys = list(payload.discriminator_keys or [])
        if discriminator_type == DiscriminatorType.WIDGET_OPTION:
            if not keys:
                raise SchemaValidationError("widget_option sharing needs discriminator_keys")
            undeclared = [key for key in keys if config_fields and key not in config_fields]
            if undeclared:
                raise SchemaValidationError(
                    f"discriminator_keys not declared in config_schema: {', '.join(undeclared)}"
                )
        if (
            CredentialScope(payload.credential_scope) == CredentialScope.WIDGET
            and discriminator_type != DiscriminatorType.WIDGET
        ):
            raise SchemaValidationError("Widget-scoped credentials need a widget discriminator")

        if IntegrationMode(payload.mode) == IntegrationMode.PULL:
            mode_fields = _validate_pull_fields(payload, self.fetchers)
            mode_fields["pull_endpoint"] = payload.pull_endpoint
        else:
            mode_fields = _validate_push_fields(payload)

        integration = IntegrationDefinition(
            widget_type=payload.widget_type,
            name=payload.name,
            description=payload.description,
            mode=IntegrationMode(payload.mode).value,
            credential_scope=CredentialScope(payload.credential_scope).value,
            discriminator_type=discriminator_type.value,
            discriminator_keys=keys,
            credential_schema=dict(payload.credential_schema or {}),
            config_schema=dict(payload.config_schema or {}),
            is_active=payload.is_active,
            **mode_fields,
        )

        with self._session_factory() as session:
            session.add(integration)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise IntegrationAlreadyExistsError(
                    f"Integration '{payload.name}' already exists for widget type '{payload.widget_type}'"
                ) from e
            except SQLAlchemyError as e:
                session.rollback()
                log_error(e, widget_type=payload.widget_type)
                raise
            session.refresh(integration)

        log_info(
            "Integration registered",
            integration_id=str(integration.id),
            widget_type=integration.widget_type,
            mode=integration.mode,
        )
        return integration

    def get(self, integration_id: uuid.UUID) -> IntegrationDefinition:
        with self._session_factory() as session:
            integration = session.get(IntegrationDefinition, integration_id)
        if integration is None:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found")
        return integration

    def list(self, widget_type: Optional[str] = None, active: Optional[bool] = None) -> List[IntegrationDefinition]:
        statement = select(IntegrationDefinition)
        if widget_type is not None:
            statement = statement.where(IntegrationDefinition.widget_type == widget_type)
        if active is not None:
            statement = statement.where(IntegrationDefinition.is_active == active)
        statement = statement.order_by(IntegrationDefinition.widget_type, IntegrationDefinition.name)
        with self._session_factory() as session:
            return list(session.exec(statement))

    def lookup_by_widget_type(self, widget_type: str) -> List[IntegrationDefinition]:
        """Active integrations serving a widget type."""
        return self.list(widget_type=widget_type, active=True)

    def is_active(self, integration_id: uuid.UUID) -> bool:
        with self._session_factory() as session:
            integration = session.get(IntegrationDefinition, integration_id)
            return integration is not None and integration.is_active

    def set_active(self, integration_id: uuid.UUID, active: bool) -> IntegrationDefinition:
        with self._session_factory() as session:
            integration = session.get(IntegrationDefinition, integration_id)
            if integration is None:
                raise IntegrationNotFoundError(f"Integration {integration_id} not found")
            integration.is_active = active
            integration.touch()
            session.add(integration)
            session.commit()
            session.refresh(integration)
        log_info("Integration active flag changed", integration_id=str(integration_id), is_active=active)
        return integration

    def validate_registered_fetchers(self) -> None:
        """
        Fail fast if a stored pull definition names an unregistered fetcher.

        Raises:
            SchemaValidationError: Listing every offending definition
        """
        unknown = [
            f"{integration.widget_type}/{integration.name} -> {integration.fetcher}"
            for integration in self.list()
            if integration.is_pull and integration.fetcher not in self.fetchers
        ]
        if unknown:
            raise SchemaValidationError(f"Integrations reference unknown fetchers: {'; '.join(unknown)}", errors=unknown)

    # ------------------------------------------------------------------
    # Parsed schema access
    # ------------------------------------------------------------------

    def resolve_fetcher(self, integration: IntegrationDefinition) -> Fetcher:
        fetcher = self.fetchers.get(integration.fetcher or "")
        if fetcher is None:
            raise SchemaValidationError(f"Integration {integration.id} has no registered fetcher")
        return fetcher

    def credential_schema(self, integration: IntegrationDefinition) -> CredentialSchema:
        schema = self._credential_schemas.get(integration.id)
        if schema is None:
            schema = parse_credential_schema(integration.credential_schema)
            self._credential_schemas[integration.id] = schema
        return schema

    def validate_options(self, integration: IntegrationDefinition, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Validate widget options against config_schema, applying defaults.

        Raises:
            SchemaValidationError: On invalid or missing required options
        """
        fields = self._config_fields.get(integration.id)
        if fields is None:
            fields = parse_fields(integration.config_schema)
            self._config_fields[integration.id] = fields
        return validate_values(fields, options or {})

    @staticmethod
    def serve_limits(integration: IntegrationDefinition) -> Dict[str, str]:
        return (integration.pull_config or {}).get("serve_limits") or dict(DEFAULT_SERVE_LIMITS)
