"""FastAPI route definitions for the Productflow HTTP host."""

from __future__ import annotations

from productflow.web.routes.audit import create_audit_router
from productflow.web.routes.campaigns import CampaignCreate, create_campaigns_router
from productflow.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)
from productflow.web.routes.records import RecordCreate, TransitionBody, create_records_router
from productflow.web.routes.reviewers import create_reviewers_router
from productflow.web.routes.sessions import create_sessions_router

__all__ = [
    "CampaignCreate",
    "HealthResponse",
    "ReadinessResponse",
    "RecordCreate",
    "TransitionBody",
    "create_audit_router",
    "create_campaigns_router",
    "create_health_router",
    "create_records_router",
    "create_reviewers_router",
    "create_sessions_router",
]
