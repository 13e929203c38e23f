"""
GrowSync Backend - Application Package Initializer
===================================================

What: Marks the `growsync` directory as a Python package.
Who:  Used implicitly by Python's import system and explicitly by pytest and uvicorn.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Security (request authentication) │  ← HMAC signature checks
    ├─────────────────────────────────────┤
    │         Services (Sync Engine)      │  ← analysis, mapping, upsert, batch
    ├─────────────────────────────────────┤
    │        Schemas (Data Contracts)     │  ← Pydantic models
    └─────────────────────────────────────┘

    The external record store (Notion) is reached only through
    services.notion_store, and only via the shared outbound rate limiter.
"""

__version__ = "1.0.0"
