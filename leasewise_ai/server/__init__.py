"""
Leasewise-AI Server Package.

This package contains the web server implementation for the Leasewise-AI agent core.
It includes the API definition, configuration, dependency wiring and error mapping.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Configuration and database connections.
    exception_handlers: Mapping of agent core errors to HTTP responses.
    schemas: Pydantic schemas for API request validation.
    services: Agent service wiring and FastAPI dependencies.
"""
