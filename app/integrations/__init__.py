"""
Widget third-party data synchronization.

Dashboard widgets read third-party data from a shared cache instead of
calling the third party themselves. This package fills that cache.

Architecture:
- registry.py: Integration definitions, field schemas and fetcher lookup
- vault.py: Encrypted credentials per organization or widget instance
- discriminator.py: Cache-sharing keys (organization, widget, widget option)
- cache_store.py: Versioned cache entries with optimistic updates
- fetchers/: Built-in fetchers (rss, json_api, finnhub, spotify)
- poller.py: One poll with retry, backoff and token rotation
- scheduler.py: Debounced queue, worker pool and stale-entry scans
- webhooks.py: Authenticated push payloads
- data_api.py: Consumer reads with conditional versions
- engine.py: Wires the components together for one process
- service.py: Operator flows (test fetch, OAuth connect)
- tasks.py: Celery tasks for the celery scheduler backend

Design Principles:
- Consumers never wait on a third party
- Credentials are encrypted at rest and never logged
- At most one poll runs per cache entry at a time
- Add a fetcher by subclassing Fetcher and registering it in FETCHER_REGISTRY
"""

from app.models.cache_entry import IntegrationData
from app.models.credential import IntegrationCredential
from app.models.integration import IntegrationDefinition

__all__ = [
    "IntegrationData",
    "IntegrationCredential",
    "IntegrationDefinition",
]
