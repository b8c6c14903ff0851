"""CutMatch gateway: FastAPI REST API layer.

Modules
-------
main
    FastAPI application factory, route handlers, error handlers, and the
    ``main()`` CLI entry point.
middleware
    Security headers, sliding-window rate limiting, and access logging.
models
    Pydantic response models.
"""
