# Middleware package init
"""
NutriScan Backend — Middleware Package
=======================================

Middleware Chain (order matters):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    1. Rate Limit first: abusive clients are rejected before any image is read
    2. Request ID: correlation id for every log line of the request
    3. Logging: method, path, status, duration with the request id
    4. GZip / CORS: response shaping

Responses travel the chain in reverse, so the request id header and the
access log line both see the final status code.
"""
