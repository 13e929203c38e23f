# Routes package init
"""
GrowSync Backend - API Routes Package
======================================

Route Inventory:
    - analyze.py: POST /analyze   (signed batch webhook)
    - health.py:  GET  /health    (liveness)
                  GET  /ready     (readiness: store configuration)

Routes stay thin: authenticate, validate, delegate to a service, shape the
response. Business logic lives in growsync.services.
"""
