"""
Versioned cache of integration payloads.

One row per (integration, discriminator). Writes go through upsert(), which
is safe under concurrent writers: existing rows are updated with a
compare-and-increment on ``version`` and concurrent first inserts are
resolved by the unique constraint. A losing writer re-reads and retries.
"""
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from app.core.database import get_session_context
from app.core.exceptions import ConcurrentUpdateError
from app.core.logging_config import log_debug, log_error
from app.core.time_utils import Clock, add_seconds, ensure_utc, utc_now
from app.integrations.discriminator import Discriminator
from app.models.cache_entry import IntegrationData
from app.models.enums import DataStatus
from app.models.integration import IntegrationDefinition

MAX_UPSERT_ATTEMPTS = 5

CredentialUpdate = Callable[[Session], None]


def entry_is_stale(entry: IntegrationData, now: datetime) -> bool:
    return entry.refresh_at is not None and ensure_utc(entry.refresh_at) <= ensure_utc(now)


class CacheStore:
    """Latest payload per discriminator with a monotonic version."""

    def __init__(self, session_factory: Callable[[], Session] = get_session_context, clock: Clock = utc_now):
        self._session_factory = session_factory
        self._clock = clock

    @staticmethod
    def _select(session: Session, integration_id: uuid.UUID, key: str) -> Optional[IntegrationData]:
        statement = select(IntegrationData).where(
            IntegrationData.integration_id == integration_id,
            IntegrationData.discriminator_key == key,
        )
        return session.exec(statement).first()

    @staticmethod
    def _refresh_at(now: datetime, pull_interval: Optional[int]) -> Optional[datetime]:
        return add_seconds(now, pull_interval) if pull_interval else None

    def upsert(
        self,
        discriminator: Discriminator,
        data: Optional[Dict[str, Any]],
        status: DataStatus = DataStatus.SUCCESS,
        error_message: Optional[str] = None,
        pull_interval: Optional[int] = None,
        credential_update: Optional[CredentialUpdate] = None,
    ) -> Optional[IntegrationData]:
        """
        Write a fetch or push outcome.

        Success stores ``data``, bumps the version by one and sets
        ``fetched_at``. ``refresh_at`` becomes now + pull_interval (pull) or
        stays null (push). An error keeps data, version and fetched_at and
        only updates status/error_message and ``refresh_at``. An error for a
        discriminator that was never written creates nothing and returns None.

        ``credential_update`` runs inside the same transaction, so rotated
        credentials are committed together with the data they produced.

        Raises:
            ConcurrentUpdateError: If the row kept changing for MAX_UPSERT_ATTEMPTS attempts
        """
        status = DataStatus(status)
        is_success = status == DataStatus.SUCCESS

        for attempt in range(1, MAX_UPSERT_ATTEMPTS + 1):
            with self._session_factory() as session:
                now = self._clock()
                entry = self._select(session, discriminator.integration_id, discriminator.key)

                if entry is None:
                    if not is_success:
                        if credential_update is not None:
                            credential_update(session)
                            session.commit()
                        return None
                    entry = IntegrationData(
                        integration_id=discriminator.integration_id,
                        discriminator_key=discriminator.key,
                        data=data or {},
                        version=1,
                        fetched_at=now,
                        refresh_at=self._refresh_at(now, pull_interval),
                        status=DataStatus.SUCCESS.value,
                        organization_id=discriminator.organization_id,
                        widget_instance_id=discriminator.widget_instance_id,
                        fetch_options=discriminator.options,
                    )
                    session.add(entry)
                    if credential_update is not None:
                        credential_update(session)
                    try:
                        session.commit()
                    except IntegrityError:
                        # A concurrent writer inserted first; update its row instead
                        session.rollback()
                        log_debug("Cache insert lost race, retrying", discriminator=discriminator.key, attempt=attempt)
                        continue
                    session.refresh(entry)
                    return entry

                values: Dict[str, Any] = {"status": status.value, "updated_at": now}
                if is_success:
                    values.update(
                        data=data or {},
                        version=entry.version + 1,
                        fetched_at=now,
                        refresh_at=self._refresh_at(now, pull_interval),
                        error_message=None,
                    )
                else:
                    values["error_message"] = error_message
                    if pull_interval:
                        values["refresh_at"] = self._refresh_at(now, pull_interval)

                statement = (
                    update(IntegrationData)
                    .where(IntegrationData.id == entry.id, IntegrationData.version == entry.version)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                try:
                    result = session.execute(statement)
                    if result.rowcount != 1:
                        session.rollback()
                        log_debug("Cache version conflict, retrying", discriminator=discriminator.key, attempt=attempt)
                        continue
                    if credential_update is not None:
                        credential_update(session)
                    # Report what this writer committed, not whatever a later writer left behind
                    session.expunge(entry)
                    session.commit()
                except SQLAlchemyError as e:
                    session.rollback()
                    log_error(e, discriminator=discriminator.key)
                    raise
                for name, value in values.items():
                    setattr(entry, name, value)
                return entry

        raise ConcurrentUpdateError(f"Cache entry {discriminator.key} changed concurrently {MAX_UPSERT_ATTEMPTS} times")

    def get(self, discriminator: Discriminator) -> Optional[IntegrationData]:
        return self.get_by_key(discriminator.integration_id, discriminator.key)

    def get_by_key(self, integration_id: uuid.UUID, key: str) -> Optional[IntegrationData]:
        with self._session_factory() as session:
            return self._select(session, integration_id, key)

    def is_stale(self, discriminator: Discriminator, now: Optional[datetime] = None) -> bool:
        entry = self.get(discriminator)
        return entry is not None and entry_is_stale(entry, now or self._clock())

    def list_stale(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[IntegrationData]:
        """Stale entries of active pull integrations, oldest refresh_at first."""
        now = now or self._clock()
        statement = (
            select(IntegrationData)
            .join(IntegrationDefinition, IntegrationDefinition.id == IntegrationData.integration_id)
            .where(
                IntegrationDefinition.is_active == True,  # noqa: E712
                IntegrationData.refresh_at.is_not(None),
                IntegrationData.refresh_at <= now,
            )
            .order_by(IntegrationData.refresh_at)
        )
        if limit:
            statement = statement.limit(limit)
        with self._session_factory() as session:
            return list(session.exec(statement))

    def list_for_integration(self, integration_id: uuid.UUID) -> List[IntegrationData]:
        statement = (
            select(IntegrationData)
            .where(IntegrationData.integration_id == integration_id)
            .order_by(IntegrationData.updated_at.desc())
        )
        with self._session_factory() as session:
            return list(session.exec(statement))
