"""HTTP host for Productflow.

A FastAPI application exposing the workflow engine: records and
transitions, edit sessions, bulk campaigns, audit queries and exports,
and reviewer management.
"""

from __future__ import annotations

from productflow.web.app import create_app
from productflow.web.middleware import RequestLoggingMiddleware

__all__ = [
    "RequestLoggingMiddleware",
    "create_app",
]
