"""Application package for the Lessonbook tutoring backend.

This package exposes the store, ledger, aggregation and service modules
used by the FastAPI application. It is intentionally lightweight;
individual modules contain the concrete implementations and
documentation.
"""
