"""
Action queue builder.

Recomputes the admin work queue from campaign state on every read. Each
in-flight campaign yields an initial-actions item (direct streams + playlist
adds) and, once its playlist stream target is reached, a removal item.

Ordering: Overdue, then Needed, then Completed; ties broken by due time.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .deadline import (
    DEADLINE_HOURS,
    deadline_for,
    format_due_label,
    hours_until_deadline,
)
from .models import (
    ActionFlags,
    ActionItem,
    ActionStatus,
    ActionType,
    Campaign,
    Order,
)
from .state_machine import (
    GRACE_HOURS,
    completed_at,
    initial_actions_complete,
    is_fully_excluded,
    is_hidden,
    removal_triggered,
)
from .store import CampaignStore

logger = logging.getLogger(__name__)

CANCELLED_STATUS = 'cancelled'
REMOVAL_DUE_LABEL = 'now!'


def _song_numbers(campaigns: List[Campaign]) -> Dict[str, int]:
    """1-based position of each campaign within a multi-song order."""
    groups: Dict[str, List[Campaign]] = defaultdict(list)
    for campaign in campaigns:
        groups[campaign.order_id].append(campaign)

    numbers: Dict[str, int] = {}
    for group in groups.values():
        if len(group) < 2:
            continue
        group.sort(key=lambda c: (c.line_item, c.created_at, c.id))
        for position, campaign in enumerate(group, start=1):
            numbers[campaign.id] = position
    return numbers


def build_initial_item(
    campaign: Campaign,
    order: Order,
    now: datetime,
    deadline_hours: int = DEADLINE_HOURS,
) -> ActionItem:
    due_by_timestamp = deadline_for(order.created_at, deadline_hours)
    hours_left = hours_until_deadline(order.created_at, now, deadline_hours)

    done = None
    if initial_actions_complete(campaign):
        status = ActionStatus.COMPLETED
        done = completed_at(campaign)
    elif now > due_by_timestamp:
        status = ActionStatus.OVERDUE
    else:
        status = ActionStatus.NEEDED

    return ActionItem(
        id=f'{campaign.id}-initial',
        campaign_id=campaign.id,
        action_type=ActionType.INITIAL,
        status=status,
        due_by=format_due_label(hours_left),
        due_by_timestamp=due_by_timestamp,
        is_hidden=is_hidden(campaign, now),
        hidden_until=campaign.hidden_until,
        completed_at=done,
        order_id=campaign.order_id,
        order_number=campaign.order_number,
        customer_name=campaign.customer_name or order.customer_name,
        song_name=campaign.song_name,
        package_name=campaign.package_name,
        actions=ActionFlags(
            direct_streams=not campaign.direct_streams_confirmed,
            add_to_playlists=not campaign.playlists_added_confirmed,
        ),
        created_at=campaign.created_at,
    )


def build_removal_item(
    campaign: Campaign, order: Order, now: datetime
) -> ActionItem:
    done = None
    if campaign.removed_from_playlists:
        status = ActionStatus.COMPLETED
        done = completed_at(campaign)
    else:
        status = ActionStatus.NEEDED

    return ActionItem(
        id=f'{campaign.id}-removal',
        campaign_id=campaign.id,
        action_type=ActionType.REMOVAL,
        status=status,
        due_by=REMOVAL_DUE_LABEL,
        due_by_timestamp=now,
        is_hidden=is_hidden(campaign, now),
        hidden_until=campaign.hidden_until,
        completed_at=done,
        order_id=campaign.order_id,
        order_number=campaign.order_number,
        customer_name=campaign.customer_name or order.customer_name,
        song_name=campaign.song_name,
        package_name=campaign.package_name,
        actions=ActionFlags(
            remove_from_playlists=not campaign.removed_from_playlists,
        ),
        created_at=campaign.created_at,
    )


def items_for_campaign(
    campaign: Campaign,
    order: Order,
    now: datetime,
    deadline_hours: int = DEADLINE_HOURS,
) -> List[ActionItem]:
    """Zero, one or two action items for a single campaign."""
    items: List[ActionItem] = []
    if not campaign.initial_actions_excluded:
        items.append(build_initial_item(campaign, order, now, deadline_hours))
    if removal_triggered(campaign, now) and not campaign.removal_actions_excluded:
        items.append(build_removal_item(campaign, order, now))
    return items


def _stale_completion(
    item: ActionItem, now: datetime, grace_hours: int
) -> bool:
    return (
        item.status == ActionStatus.COMPLETED
        and item.completed_at is not None
        and now - item.completed_at > timedelta(hours=grace_hours)
    )


def sort_items(items: List[ActionItem]) -> List[ActionItem]:
    return sorted(
        items, key=lambda i: (i.status.priority, i.due_by_timestamp)
    )


async def build_queue(
    store: CampaignStore,
    now: datetime,
    include_hidden: bool = False,
    deadline_hours: int = DEADLINE_HOURS,
    grace_hours: int = GRACE_HOURS,
) -> List[ActionItem]:
    """
    Build the prioritized action queue.

    Campaigns of cancelled or unknown orders and fully excluded campaigns are
    skipped. Completed items older than the grace window are dropped even if
    the sweeper has not excluded them yet. Snoozed items are dropped unless
    ``include_hidden`` is set.
    """
    orders: Dict[str, Order] = {o.id: o for o in await store.list_orders()}
    live: List[Campaign] = []
    for campaign in await store.list_campaigns():
        order: Optional[Order] = orders.get(campaign.order_id)
        if order is None:
            logger.warning(
                f'Campaign {campaign.id}: order {campaign.order_id} missing, skipped'
            )
            continue
        if order.status.lower() == CANCELLED_STATUS:
            continue
        live.append(campaign)

    song_numbers = _song_numbers(live)

    items: List[ActionItem] = []
    for campaign in live:
        if is_fully_excluded(campaign):
            continue
        order = orders[campaign.order_id]
        for item in items_for_campaign(campaign, order, now, deadline_hours):
            if _stale_completion(item, now, grace_hours):
                continue
            if item.is_hidden and not include_hidden:
                continue
            item.song_number = song_numbers.get(campaign.id)
            items.append(item)

    return sort_items(items)
