"""
Campaign listing and dashboard counters.
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .action_queue import CANCELLED_STATUS, build_queue
from .models import ActionStatus, Campaign, CampaignState
from .state_machine import describe
from .store import CampaignStore

logger = logging.getLogger(__name__)

_ACTIVE_STATES = {
    CampaignState.AWAITING_INITIAL_ACTIONS,
    CampaignState.INITIAL_ACTIONS_COMPLETE,
    CampaignState.AWAITING_REMOVAL,
}


class CampaignView(Campaign):
    """A campaign row plus its derived lifecycle fields."""

    state: CampaignState
    status_label: str
    estimated_streams: int
    estimated_removal_date: Optional[datetime] = None
    is_hidden: bool = False


class Counters(BaseModel):
    active_campaigns: int
    actions_needed: int
    total_playlists: int
    playlisted_songs: int


async def _live_campaigns(store: CampaignStore) -> List[Campaign]:
    cancelled = {
        o.id
        for o in await store.list_orders()
        if o.status.lower() == CANCELLED_STATUS
    }
    return [c for c in await store.list_campaigns() if c.order_id not in cancelled]


def to_view(campaign: Campaign, now: datetime) -> CampaignView:
    derived = describe(campaign, now)
    return CampaignView(
        **campaign.model_dump(),
        state=derived['state'],
        status_label=derived['status_label'],
        estimated_streams=derived['estimated_streams'],
        estimated_removal_date=derived['estimated_removal_date'],
        is_hidden=derived['is_hidden'],
    )


async def list_campaigns(
    store: CampaignStore, now: datetime, state: Optional[CampaignState] = None
) -> List[CampaignView]:
    """Campaigns of non-cancelled orders, newest first."""
    views = [to_view(c, now) for c in await _live_campaigns(store)]
    if state is not None:
        views = [v for v in views if v.state == state]
    return sorted(views, key=lambda v: (v.created_at, v.line_item), reverse=True)


async def counters(store: CampaignStore, now: datetime) -> Counters:
    campaigns = [to_view(c, now) for c in await _live_campaigns(store)]
    queue = await build_queue(store, now)
    return Counters(
        active_campaigns=sum(1 for v in campaigns if v.state in _ACTIVE_STATES),
        actions_needed=sum(
            1 for i in queue if i.status != ActionStatus.COMPLETED
        ),
        total_playlists=len(await store.list_playlists(active_only=True)),
        playlisted_songs=sum(
            1
            for v in campaigns
            if v.playlists_added_confirmed and not v.removed_from_playlists
        ),
    )
