"""
Serving — FastAPI application for the knowledge base.

This module exposes ingestion, search and document management over HTTP,
scoped per caller by the ``X-Session-Id`` header.
"""
