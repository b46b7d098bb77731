"""
Fetcher contract.

A fetcher performs exactly one logical external call cycle per invocation:

    fetch(credentials, options, context) -> FetchOk | FetchError

Both outcomes carry the credentials the caller must persist afterwards. They
are the input credentials unless the fetcher rotated an OAuth token, in
which case the caller stores the new values in the same transaction as the
data write.

Fetchers never log raw credential values.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx

from app.core.config import settings
from app.core.exceptions import (
    CredentialError,
    RateLimited,
    SchemaValidationError,
    StaleCredential,
    UpstreamError,
    WidgetSyncException,
)
from app.core.time_utils import Clock, utc_now
from app.models.integration import IntegrationDefinition

# FetchError kinds
UPSTREAM = "upstream"
RATE_LIMITED = "rate_limited"
CREDENTIAL = "credential"
STALE_CREDENTIAL = "stale_credential"
INVALID_OPTIONS = "invalid_options"

_NON_RETRYABLE = {CREDENTIAL, STALE_CREDENTIAL, INVALID_OPTIONS}


@dataclass
class FetchOk:
    data: Dict[str, Any]
    credentials: Dict[str, Any] = field(default_factory=dict)

    ok = True


@dataclass
class FetchError:
    reason: str
    credentials: Dict[str, Any] = field(default_factory=dict)
    kind: str = UPSTREAM
    retry_after: Optional[float] = None
    status_code: Optional[int] = None

    ok = False

    @property
    def retryable(self) -> bool:
        return self.kind not in _NON_RETRYABLE

    def to_exception(self) -> WidgetSyncException:
        """Map the outcome onto the exception the poller's retry policy understands."""
        if self.kind == RATE_LIMITED:
            return RateLimited(self.retry_after or 0.0, self.reason)
        if self.kind == STALE_CREDENTIAL:
            return StaleCredential(self.reason)
        if self.kind == CREDENTIAL:
            return CredentialError(self.reason)
        if self.kind == INVALID_OPTIONS:
            return SchemaValidationError(self.reason)
        return UpstreamError(self.reason, status_code=self.status_code)


FetchResult = Union[FetchOk, FetchError]


@dataclass
class FetchContext:
    """Per-call collaborators handed to a fetcher."""
    integration: IntegrationDefinition
    http: httpx.AsyncClient
    clock: Clock = utc_now
    refresh_margin_seconds: int = field(default_factory=lambda: settings.oauth_refresh_margin_seconds)


class Fetcher(ABC):
    """Base class for built-in and custom fetchers."""

    name: str = ""

    @abstractmethod
    async def fetch(
        self,
        credentials: Dict[str, Any],
        options: Dict[str, Any],
        context: FetchContext,
    ) -> FetchResult:
        ...


def parse_retry_after(value: Optional[str], default: float = 60.0) -> float:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        return default


def error_from_response(response: httpx.Response, credentials: Dict[str, Any], service: str) -> FetchError:
    """Build a FetchError from a non-2xx response."""
    status = response.status_code
    if status == 429:
        return FetchError(
            reason=f"{service} rate limit exceeded",
            credentials=credentials,
            kind=RATE_LIMITED,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
            status_code=status,
        )
    if status in (401, 403):
        return FetchError(
            reason=f"{service} rejected the credentials (HTTP {status})",
            credentials=credentials,
            kind=CREDENTIAL,
            status_code=status,
        )
    return FetchError(
        reason=f"{service} returned HTTP {status}",
        credentials=credentials,
        kind=UPSTREAM,
        status_code=status,
    )


def error_from_transport(exc: httpx.HTTPError, credentials: Dict[str, Any], service: str) -> FetchError:
    if isinstance(exc, httpx.TimeoutException):
        return FetchError(reason=f"{service} request timed out", credentials=credentials)
    return FetchError(reason=f"{service} request failed: {type(exc).__name__}", credentials=credentials)
