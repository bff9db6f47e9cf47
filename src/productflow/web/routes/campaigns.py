"""Bulk campaign endpoints.

Routes:
    POST /campaigns/ - Start a campaign (or answer a dry run)
    GET /campaigns/ - List campaigns
    GET /campaigns/{campaign_id} - Campaign snapshot
    POST /campaigns/{campaign_id}/cancel - Request cancellation
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from productflow.domain import Identity
from productflow.engine import WorkflowEngine
from productflow.storage import RecordFilter
from productflow.web.dependencies import get_identity, get_workflow_engine, unwrap
from productflow.workflow import BulkCampaign, CampaignAction, CampaignOptions

logger = structlog.get_logger(__name__)


class CampaignCreate(BaseModel):
    """Request schema for starting a campaign."""

    action: CampaignAction
    filter: RecordFilter = Field(default_factory=RecordFilter)
    options: CampaignOptions = Field(default_factory=CampaignOptions)


def create_campaigns_router() -> APIRouter:
    """Create the bulk campaign router."""
    router = APIRouter(prefix="/campaigns", tags=["campaigns"])

    @router.post("/", response_model=BulkCampaign, status_code=202)
    async def start_campaign(
        body: CampaignCreate,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> BulkCampaign:
        campaign = unwrap(
            await engine.start_campaign(body.action, body.filter, identity, body.options)
        )
        logger.info(
            "campaign_accepted",
            campaign_id=campaign.id,
            status=campaign.status.value,
            dry_run=campaign.dry_run,
        )
        return campaign

    @router.get("/", response_model=list[BulkCampaign])
    async def list_campaigns(
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> list[BulkCampaign]:
        return unwrap(await engine.list_campaigns(identity))

    @router.get("/{campaign_id}", response_model=BulkCampaign)
    async def get_campaign(
        campaign_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> BulkCampaign:
        return unwrap(await engine.get_campaign(campaign_id, identity))

    @router.post("/{campaign_id}/cancel", response_model=BulkCampaign)
    async def cancel_campaign(
        campaign_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
        identity: Identity | None = Depends(get_identity),  # noqa: B008
    ) -> BulkCampaign:
        return unwrap(await engine.cancel_campaign(campaign_id, identity))

    return router
