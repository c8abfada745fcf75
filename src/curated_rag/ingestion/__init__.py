"""
Ingestion — upload checks, text extraction, chunking, quality gating, and
embedding into the vector store.

This module is responsible for the ETL-like pipeline that converts raw
documents (PDF, Markdown, plain text) into validated, embedded chunks
stored under one session.
"""
