"""
GrowSync Backend - Upsert Coordinator
======================================

What:  Idempotent writes into the record store.
How:   History records are keyed by sha256(record URL | date), stored in the
       "Idempotency Key" property. An upsert looks the key up and updates the
       match, or creates a new record under the history collection. Every store
       call goes through the shared OutboundRateLimiter.
Who:   Batch orchestrator, twice per job (primary update, history upsert).

Known limitation:
    Lookup and create are two separate calls. Two concurrent upserts of the
    same key can both miss the lookup and both create; the store then holds
    two records for the key and later upserts update the first match
    (last writer wins on the fields).
"""

import logging
from typing import Optional

from growsync.exceptions import ConfigurationError, PropertyMappingError
from growsync.services.property_mapper import MappingContext, relation, rich_text
from growsync.services.rate_limiter import OutboundRateLimiter
from growsync.services.store_base import Properties, RecordStore

logger = logging.getLogger(__name__)

IDEMPOTENCY_PROPERTY = "Idempotency Key"
RELATED_PHOTO_PROPERTY = "Related Photo"
NAME_PROPERTY = "Name"


class UpsertCoordinator:
    """
    Query-then-create-or-update against a RecordStore.

    Args:
        store:                 Record store gateway
        limiter:               Shared outbound rate limiter
        history_collection_id: Collection new history records are created under
    """

    def __init__(
        self,
        store: RecordStore,
        limiter: OutboundRateLimiter,
        history_collection_id: Optional[str],
    ):
        self.store = store
        self.limiter = limiter
        self.history_collection_id = history_collection_id

    async def upsert_record(self, key: str, context: MappingContext, properties: Properties) -> str:
        """
        Create or update the history record identified by `key`.

        Returns:
            The id of the record that now holds `properties`.

        Raises:
            ConfigurationError:   No history collection configured
            PropertyMappingError: `properties` carries no Name title
            InvalidUrlError:      The context's record URL holds no identifier
            ThrottledError / ExternalStoreError: from the store
        """
        collection_id = self.history_collection_id
        if not collection_id:
            raise ConfigurationError(
                message="History collection is not configured",
                missing=["NOTION_HISTORY_DB_ID"],
            )

        props = dict(properties)
        props[IDEMPOTENCY_PROPERTY] = rich_text(key)
        if RELATED_PHOTO_PROPERTY not in props:
            props[RELATED_PHOTO_PROPERTY] = relation([self.store.extract_id(context.record_url)])
        if "title" not in props.get(NAME_PROPERTY, {}):
            raise PropertyMappingError(
                message="History record requires a Name title property",
                field=NAME_PROPERTY,
            )

        existing_id = await self.limiter.schedule(
            lambda: self.store.lookup_by_key(collection_id, key)
        )
        if existing_id:
            record_id = await self.limiter.schedule(lambda: self.store.update(existing_id, props))
            logger.info("Updated history record %s (key=%s...)", record_id, key[:12])
            return record_id

        record_id = await self.limiter.schedule(lambda: self.store.create(collection_id, props))
        logger.info("Created history record %s (key=%s...)", record_id, key[:12])
        return record_id

    async def update_record(self, record_url: str, properties: Properties) -> str:
        """
        Update the primary record behind `record_url`.

        An empty property set makes no store call.

        Raises:
            InvalidUrlError: The URL holds no record identifier
        """
        record_id = self.store.extract_id(record_url)
        if not properties:
            logger.debug("No properties to write for record %s, skipping update", record_id)
            return record_id
        return await self.limiter.schedule(lambda: self.store.update(record_id, properties))
