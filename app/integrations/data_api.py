"""
Consumer reads over the shared cache.

Reads never wait on a third party. A stale entry is enqueued for refresh and
its last good payload is served right away. Per-consumer limits (such as an
RSS widget's ``max_items``) are applied to a copy of the payload at serve
time, so consumers with different settings share one cache entry.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple, Union

from sqlmodel import Session

from app.core.database import get_session_context
from app.core.exceptions import (
    IntegrationModeError,
    IntegrationNotFoundError,
    WidgetInstanceNotFoundError,
)
from app.core.time_utils import Clock, utc_now
from app.integrations.cache_store import CacheStore, entry_is_stale
from app.integrations.discriminator import Discriminator, for_widget_instance
from app.integrations.registry import IntegrationRegistry
from app.integrations.scheduler import Scheduler
from app.models.integration import IntegrationDefinition
from app.models.widget_instance import WidgetInstance


@dataclass
class NotFound:
    enqueued: bool = False


@dataclass
class NotModified:
    version: int


@dataclass
class Served:
    data: Dict[str, Any]
    version: int
    fetched_at: Optional[datetime]
    status: str
    stale: bool = False


ConsumerRead = Union[NotFound, NotModified, Served]


def _limit(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return None
    return limit if limit >= 0 else None


def apply_serve_limits(data: Dict[str, Any], limits: Dict[str, str], options: Dict[str, Any]) -> Dict[str, Any]:
    """Truncate list fields to the consumer's option values without touching ``data``."""
    result = dict(data or {})
    for field_name, option_name in limits.items():
        items = result.get(field_name)
        limit = _limit(options.get(option_name))
        if isinstance(items, list) and limit is not None:
            result[field_name] = items[:limit]
    return result


class DataAPI:
    def __init__(
        self,
        registry: IntegrationRegistry,
        cache_store: CacheStore,
        scheduler: Scheduler,
        session_factory: Callable[[], Session] = get_session_context,
        clock: Clock = utc_now,
    ):
        self.registry = registry
        self.cache_store = cache_store
        self.scheduler = scheduler
        self._session_factory = session_factory
        self._clock = clock

    def get_for_consumer(
        self,
        integration: IntegrationDefinition,
        discriminator: Discriminator,
        consumer_options: Dict[str, Any],
        client_version: Optional[int] = None,
    ) -> ConsumerRead:
        entry = self.cache_store.get(discriminator)
        if entry is None:
            enqueued = False
            if integration.is_pull:
                enqueued = self.scheduler.enqueue(discriminator, integration.pull_interval_seconds)
            return NotFound(enqueued=enqueued)

        stale = entry_is_stale(entry, self._clock())
        if stale:
            self.scheduler.enqueue(discriminator, integration.pull_interval_seconds)

        if client_version is not None and client_version == entry.version:
            return NotModified(version=entry.version)

        data = apply_serve_limits(entry.data, self.registry.serve_limits(integration), consumer_options)
        return Served(
            data=data,
            version=entry.version,
            fetched_at=entry.fetched_at,
            status=entry.status,
            stale=stale,
        )

    # ------------------------------------------------------------------
    # Widget instance helpers used by the HTTP layer
    # ------------------------------------------------------------------

    def resolve_widget(
        self,
        widget_instance_id: uuid.UUID,
        integration_id: Optional[uuid.UUID] = None,
    ) -> Tuple[IntegrationDefinition, WidgetInstance, Discriminator, Dict[str, Any]]:
        """
        Find the integration serving a widget instance and its discriminator.

        Raises:
            WidgetInstanceNotFoundError: Unknown widget instance
            IntegrationNotFoundError: No active integration serves the widget
            SchemaValidationError: Widget options do not match config_schema
        """
        with self._session_factory() as session:
            instance = session.get(WidgetInstance, widget_instance_id)
        if instance is None:
            raise WidgetInstanceNotFoundError(f"Widget instance {widget_instance_id} not found")

        integrations = self.registry.lookup_by_widget_type(instance.widget_type)
        if integration_id is not None:
            integrations = [i for i in integrations if i.id == integration_id]
        if not integrations:
            raise IntegrationNotFoundError(f"No active integration for widget type '{instance.widget_type}'")

        integration = integrations[0]
        options = self.registry.validate_options(integration, instance.options)
        return integration, instance, for_widget_instance(integration, instance, options), options

    def read_widget_data(
        self,
        widget_instance_id: uuid.UUID,
        client_version: Optional[int] = None,
        integration_id: Optional[uuid.UUID] = None,
    ) -> ConsumerRead:
        integration, _, discriminator, options = self.resolve_widget(widget_instance_id, integration_id)
        return self.get_for_consumer(integration, discriminator, options, client_version)

    def request_refresh(
        self,
        widget_instance_id: uuid.UUID,
        integration_id: Optional[uuid.UUID] = None,
    ) -> Tuple[IntegrationDefinition, Discriminator, bool]:
        """
        Enqueue an immediate poll for a widget instance.

        Raises:
            IntegrationModeError: If the integration is push-only
        """
        integration, _, discriminator, _ = self.resolve_widget(widget_instance_id, integration_id)
        if not integration.is_pull:
            raise IntegrationModeError("Push integrations are refreshed by their webhook")
        enqueued = self.scheduler.enqueue(discriminator, integration.pull_interval_seconds)
        return integration, discriminator, enqueued
