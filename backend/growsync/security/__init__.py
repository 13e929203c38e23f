# Security package init
"""
GrowSync Backend - Request Authentication
==========================================

What:  Authenticates inbound webhook bodies against the shared HMAC secret.

Module Inventory:
    - signature.py: sign(), verify_signature(), authenticate_request()
"""
