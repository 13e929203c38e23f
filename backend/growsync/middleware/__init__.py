# Middleware package init
"""
GrowSync Backend - Middleware Package
======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Logging] → [Security Headers] → Route Handler

    1. Rate Limit first: reject floods before any work (and before the body is read)
    2. Request ID: correlation id for every log line of the request
    3. Logging: status and duration, tagged with the request id
    4. Security Headers: applied to every response, errors included
"""
