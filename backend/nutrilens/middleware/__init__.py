"""
NutriLens Backend: Middleware Package
=====================================

Middleware Chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Access Log] → [GZip] → [CORS] → Route

    Rate limiting runs first so rejected requests cost nothing downstream
    (no auth lookup, no ledger call). The request id is assigned before the
    access log so every access line carries it.
"""
