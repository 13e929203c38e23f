"""
GrowSync Backend - Abstract Record Store Interface
===================================================

What:  Contract for the external record store the sync engine writes into.
How:   Concrete stores (NotionStore) translate these calls into HTTP requests
       and translate failures into ExternalStoreError / ThrottledError.
Who:   Called by the UpsertCoordinator, always through the outbound rate limiter.

Implementations:
    - NotionStore: Notion REST API (pages + database query)
    - Tests use small in-memory fakes of this interface
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from growsync.services.identifiers import extract_record_id

Properties = Dict[str, Dict[str, Any]]


class RecordStore(ABC):
    """
    Typed-property record store with a lookup by idempotency key.

    Contract:
        - Record ids are the 32-char lowercase form from extract_record_id()
        - Throttling answers raise ThrottledError (the limiter retries them)
        - Every other failure raises ExternalStoreError and is not retried
    """

    @abstractmethod
    async def lookup_by_key(self, collection_id: str, key: str) -> Optional[str]:
        """
        Find the record in `collection_id` whose "Idempotency Key" equals `key`.

        Returns:
            The record id of the first match, or None when there is none.
        """
        ...

    @abstractmethod
    async def create(self, collection_id: str, properties: Properties) -> str:
        """Create a record under `collection_id` and return its id."""
        ...

    @abstractmethod
    async def update(self, record_id: str, properties: Properties) -> str:
        """Overwrite the given properties of an existing record and return its id."""
        ...

    def extract_id(self, url: str) -> str:
        """Record id embedded in a record URL (raises InvalidUrlError)."""
        return extract_record_id(url)

    async def health_check(self) -> bool:
        """Whether the store is configured to accept calls. No network traffic."""
        return True
