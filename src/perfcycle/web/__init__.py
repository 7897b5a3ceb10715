"""REST API for Perfcycle.

Exposes the review workflow over HTTP: cycle administration, form drafts
and submissions, calibration, reporting and 1:1 scheduling.
"""

from __future__ import annotations

from perfcycle.web.app import create_app
from perfcycle.web.middleware import RequestLoggingMiddleware

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
]
