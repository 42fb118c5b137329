"""
Marketing API - REST endpoints behind the admin console.

Queue listing, campaign listing/counters, order import, playlist slot
assignment (manual or generated from the customer genre), lifecycle
confirmations, snoozing and the sweep-now trigger.
All routes require an admin bearer token.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from . import database as db
from .action_queue import build_queue
from .assignments import generate_all_assignments, generate_assignments
from .auth import require_admin
from .campaigns import CampaignView, Counters, counters, list_campaigns, to_view
from .config import get_config
from .deadline import classify
from .expiry_sweeper import ExpirySweeper, get_sweeper
from .importer import import_orders
from .models import ActionItem, CampaignState
from .slots import set_slot
from .smm_client import get_smm_client
from .state_machine import (
    confirm_playlists_added,
    confirm_removal,
    hide,
    unhide,
)
from .store import mutate_campaign
from .submission import submit_direct_streams

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/v1/marketing', tags=['marketing'])


# ============================================================================
# Models
# ============================================================================


class ActionQueueResponse(BaseModel):
    items: List[ActionItem]
    total: int
    sweep: Optional[Dict[str, Any]] = None


class SlotUpdateRequest(BaseModel):
    """A playlist id, ``empty`` or ``removed``."""

    value: str = Field(..., min_length=1)


class HideRequest(BaseModel):
    until: Optional[datetime] = None
    hours: Optional[int] = Field(None, ge=1, le=24 * 30)


class GenerateAssignmentsRequest(BaseModel):
    genre: Optional[str] = None


class DeadlineResponse(BaseModel):
    order_id: str
    visible: bool
    label: str = ''
    color_band: Optional[str] = None
    color: Optional[str] = None
    hours_left: Optional[int] = None


# ============================================================================
# Helpers
# ============================================================================


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _sweeper() -> ExpirySweeper:
    sweeper = get_sweeper()
    if sweeper is None:
        sweeper = ExpirySweeper(db.get_store(), grace_hours=get_config().grace_hours)
    return sweeper


# ============================================================================
# Queue, listing, counters
# ============================================================================


@router.get('/action-queue', response_model=ActionQueueResponse)
async def get_action_queue(
    include_hidden: bool = Query(False),
    admin: str = Depends(require_admin),
):
    """Sweep stale windows, then return the prioritized action queue."""
    config = get_config()
    now = _now()
    stats = await _sweeper().sweep(now)
    items = await build_queue(
        db.get_store(),
        now,
        include_hidden=include_hidden,
        deadline_hours=config.deadline_hours,
        grace_hours=config.grace_hours,
    )
    return ActionQueueResponse(items=items, total=len(items), sweep=stats.to_dict())


@router.get('/campaigns', response_model=List[CampaignView])
async def get_campaigns(
    state: Optional[CampaignState] = Query(None),
    admin: str = Depends(require_admin),
):
    return await list_campaigns(db.get_store(), _now(), state=state)


@router.get('/campaigns/{campaign_id}', response_model=CampaignView)
async def get_campaign(campaign_id: str, admin: str = Depends(require_admin)):
    campaign = await db.get_store().get_campaign(campaign_id)
    return to_view(campaign, _now())


@router.get('/counters', response_model=Counters)
async def get_counters(admin: str = Depends(require_admin)):
    return await counters(db.get_store(), _now())


@router.get('/orders/{order_id}/deadline', response_model=DeadlineResponse)
async def get_order_deadline(order_id: str, admin: str = Depends(require_admin)):
    order = await db.get_store().get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail='Order not found')
    info = classify(
        order.created_at, order.status, _now(), get_config().deadline_hours
    )
    return DeadlineResponse(order_id=order_id, **info.to_dict())


# ============================================================================
# Import and sweep
# ============================================================================


@router.post('/import')
async def run_import(admin: str = Depends(require_admin)):
    stats = await import_orders(db.get_store(), _now())
    return stats.to_dict()


@router.post('/sweep')
async def run_sweep(admin: str = Depends(require_admin)):
    stats = await _sweeper().sweep(_now())
    return stats.to_dict()


# ============================================================================
# Campaign mutations
# ============================================================================


@router.put('/campaigns/{campaign_id}/slots/{index}', response_model=CampaignView)
async def update_slot(
    campaign_id: str,
    index: int,
    body: SlotUpdateRequest,
    admin: str = Depends(require_admin),
):
    now = _now()
    campaign = await set_slot(db.get_store(), campaign_id, index, body.value, now)
    return to_view(campaign, now)


@router.post('/campaigns/{campaign_id}/confirm-direct-streams')
async def confirm_direct_streams_endpoint(
    campaign_id: str, admin: str = Depends(require_admin)
):
    """Submit the package's order sets; confirms only if all succeed."""
    report = await submit_direct_streams(
        db.get_store(), get_smm_client(), campaign_id, submitted_by=admin
    )
    return report.to_dict()


@router.post(
    '/campaigns/{campaign_id}/confirm-playlists-added',
    response_model=CampaignView,
)
async def confirm_playlists_added_endpoint(
    campaign_id: str, admin: str = Depends(require_admin)
):
    now = _now()
    campaign = await mutate_campaign(
        db.get_store(), campaign_id, lambda c: confirm_playlists_added(c, now)
    )
    return to_view(campaign, now)


@router.post('/campaigns/{campaign_id}/confirm-removal', response_model=CampaignView)
async def confirm_removal_endpoint(
    campaign_id: str, admin: str = Depends(require_admin)
):
    now = _now()
    campaign = await mutate_campaign(
        db.get_store(), campaign_id, lambda c: confirm_removal(c, now)
    )
    return to_view(campaign, now)


@router.post('/campaigns/{campaign_id}/hide', response_model=CampaignView)
async def hide_campaign(
    campaign_id: str,
    body: Optional[HideRequest] = None,
    admin: str = Depends(require_admin),
):
    """Snooze until ``until``, or for ``hours`` (default 8) from now."""
    now = _now()
    body = body or HideRequest()
    until = body.until
    if until is None:
        until = now + timedelta(hours=body.hours or get_config().hide_hours)
    elif until.tzinfo is None:
        until = until.replace(tzinfo=timezone.utc)

    campaign = await mutate_campaign(
        db.get_store(), campaign_id, lambda c: hide(c, until, now)
    )
    return to_view(campaign, now)


@router.post('/campaigns/{campaign_id}/unhide', response_model=CampaignView)
async def unhide_campaign(campaign_id: str, admin: str = Depends(require_admin)):
    campaign = await mutate_campaign(db.get_store(), campaign_id, unhide)
    return to_view(campaign, _now())


@router.post('/campaigns/{campaign_id}/generate-assignments')
async def generate_assignments_endpoint(
    campaign_id: str,
    body: Optional[GenerateAssignmentsRequest] = None,
    admin: str = Depends(require_admin),
):
    """Fill Empty slots with genre-matched playlists, then General ones."""
    now = _now()
    genre = body.genre if body else None
    result = await generate_assignments(db.get_store(), campaign_id, genre, now)
    data = result.to_dict()
    data['campaign'] = to_view(result.campaign, now)
    return data


@router.post('/generate-assignments')
async def generate_all_assignments_endpoint(admin: str = Depends(require_admin)):
    stats = await generate_all_assignments(db.get_store(), _now())
    return stats.to_dict()
