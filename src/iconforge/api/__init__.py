"""Iconforge - FastAPI REST API layer.

Modules
-------
main
    FastAPI application with all route handlers, the error envelope, and the
    ``main()`` CLI entry point.
models
    Pydantic models for API request validation.
"""
