"""
Purchase audit log.

Every SMM panel submission attempt, successful or not, is recorded with the
raw panel response: campaign order sets in one log, playlist follower and
stream purchases in another. A storage failure is logged and reported as a
None result instead of raising; callers decide what a missing row means (the
submission service refuses to confirm a set whose success went unrecorded).

Usage:
    from .purchase_log import record_purchase

    await record_purchase(
        store,
        campaign_id='c-1',
        order_set=order_set,
        quantity=1000,
        status=PurchaseStatus.SUCCESS,
        followiz_order_id='23501',
        raw_response='{"order": 23501}',
        submitted_by='admin',
    )
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import (
    OrderSet,
    Playlist,
    PlaylistPurchaseLogEntry,
    PlaylistServiceType,
    PurchaseLogEntry,
    PurchaseStatus,
)
from .store import CampaignStore

logger = logging.getLogger(__name__)


async def record_purchase(
    store: CampaignStore,
    *,
    campaign_id: str,
    order_set: OrderSet,
    quantity: int,
    status: PurchaseStatus,
    followiz_order_id: Optional[str] = None,
    error_message: Optional[str] = None,
    raw_response: Optional[str] = None,
    cost: Optional[float] = None,
    submitted_by: str = 'system',
    now: Optional[datetime] = None,
) -> Optional[PurchaseLogEntry]:
    """
    Record one submission attempt.

    Returns the entry on success, None on failure.
    """
    entry = PurchaseLogEntry(
        id=str(uuid.uuid4()),
        campaign_id=campaign_id,
        order_set_id=order_set.id,
        service_id=order_set.service_id,
        quantity=quantity,
        followiz_order_id=followiz_order_id,
        status=status,
        error_message=error_message,
        raw_response=raw_response,
        cost=cost,
        submitted_by=submitted_by,
        created_at=now or datetime.now(timezone.utc),
    )
    try:
        await store.add_purchase_log(entry)
    except Exception as e:
        logger.error(
            f'Failed to record purchase for campaign {campaign_id} '
            f'(order set {order_set.id}): {e}'
        )
        return None
    return entry


async def record_playlist_purchase(
    store: CampaignStore,
    *,
    playlist: Playlist,
    playlist_link: str,
    service_type: PlaylistServiceType,
    order_set: OrderSet,
    quantity: int,
    status: PurchaseStatus,
    drip_runs: Optional[int] = None,
    interval_minutes: Optional[int] = None,
    followiz_order_id: Optional[str] = None,
    error_message: Optional[str] = None,
    raw_response: Optional[str] = None,
    cost: Optional[float] = None,
    submitted_by: str = 'system',
    now: Optional[datetime] = None,
) -> Optional[PlaylistPurchaseLogEntry]:
    """Record one playlist service order. Returns None on failure."""
    entry = PlaylistPurchaseLogEntry(
        id=str(uuid.uuid4()),
        playlist_id=playlist.id,
        playlist_name=playlist.name,
        playlist_link=playlist_link,
        service_type=service_type,
        order_set_id=order_set.id,
        service_id=order_set.service_id,
        quantity=quantity,
        drip_runs=drip_runs,
        interval_minutes=interval_minutes,
        followiz_order_id=followiz_order_id,
        status=status,
        error_message=error_message,
        raw_response=raw_response,
        cost=cost,
        submitted_by=submitted_by,
        created_at=now or datetime.now(timezone.utc),
    )
    try:
        await store.add_playlist_purchase_log(entry)
    except Exception as e:
        logger.error(
            f'Failed to record {service_type.value} purchase for playlist '
            f'{playlist.id} (order set {order_set.id}): {e}'
        )
        return None
    return entry


async def latest_by_order_set(
    store: CampaignStore, campaign_id: str
) -> Dict[str, PurchaseLogEntry]:
    """Most recent attempt per order set for one campaign."""
    latest: Dict[str, PurchaseLogEntry] = {}
    for entry in await store.list_purchase_logs(campaign_id):
        current = latest.get(entry.order_set_id)
        if current is None or entry.created_at >= current.created_at:
            latest[entry.order_set_id] = entry
    return latest


async def succeeded_order_sets(store: CampaignStore, campaign_id: str) -> List[str]:
    """Order sets that already have a successful purchase for the campaign."""
    entries = await store.list_purchase_logs(campaign_id)
    return sorted(
        {e.order_set_id for e in entries if e.status == PurchaseStatus.SUCCESS}
    )
