# Services package init
"""
GrowSync Backend - Services Layer (Sync Engine)
================================================

What:  Everything between an authenticated batch and the record store.

Service Inventory:
    - analysis:        analyze_job(), pure heuristic writeback for one job
    - identifiers:     record id extraction, idempotency keys
    - property_mapper: writeback / history fields → typed store properties
    - store_base:      RecordStore interface
    - notion_store:    NotionStore, RecordStore over the Notion REST API
    - rate_limiter:    OutboundRateLimiter, call spacing plus throttling backoff
    - upsert:          UpsertCoordinator, query-then-create-or-update
    - batch:           BatchOrchestrator, concurrent per-job pipeline

Pure modules (analysis, identifiers, property_mapper) do no I/O; only
notion_store talks to the network.
"""
