"""
Order import: one campaign per song/package line item.

Orders come from the order store; each non-cancelled order line item that has
no campaign yet becomes one, with targets resolved from package
configuration. Re-running the import is a no-op for lines already imported.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError
from .models import Campaign, Order, OrderItem
from .packages import resolve_package_config
from .store import CampaignStore

logger = logging.getLogger(__name__)

_TRACK_URL = re.compile(r'spotify\.com/track/([a-zA-Z0-9]+)')
_TRACK_URI = re.compile(r'spotify:track:([a-zA-Z0-9]+)')


def extract_track_id(url: Optional[str]) -> Optional[str]:
    """Spotify track id from a share URL or URI."""
    if not url:
        return None
    for pattern in (_TRACK_URL, _TRACK_URI):
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


@dataclass
class ImportStats:
    orders_checked: int = 0
    campaigns_created: int = 0
    skipped_existing: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'orders_checked': self.orders_checked,
            'campaigns_created': self.campaigns_created,
            'skipped_existing': self.skipped_existing,
            'errors': self.errors,
        }


def build_campaign(
    order: Order,
    item: OrderItem,
    line_item: int,
    configured: Dict,
    now: datetime,
) -> Campaign:
    package = resolve_package_config(item.package_name, configured)
    return Campaign(
        id=str(uuid.uuid4()),
        order_id=order.id,
        order_number=order.order_number,
        line_item=line_item,
        customer_name=order.customer_name,
        song_name=item.song_name,
        song_link=item.song_link,
        track_id=extract_track_id(item.song_link),
        package_name=item.package_name,
        package_id=item.package_id,
        direct_streams_target=package.direct_streams_target,
        playlist_streams_target=package.playlist_streams_target,
        time_on_playlists=package.time_on_playlists,
        playlist_assignments_needed=package.playlist_assignments_needed,
        campaign_status='Action Needed',
        created_at=now,
        updated_at=now,
    )


async def import_orders(
    store: CampaignStore, now: Optional[datetime] = None
) -> ImportStats:
    now = now or datetime.now(timezone.utc)
    stats = ImportStats()
    configured = await store.list_package_configs()

    for order in await store.list_orders():
        if order.status.lower() == 'cancelled':
            continue
        stats.orders_checked += 1

        for line_item, item in enumerate(order.items):
            if await store.find_campaign_for_line(order.id, line_item):
                stats.skipped_existing += 1
                continue
            try:
                campaign = build_campaign(order, item, line_item, configured, now)
            except ConfigurationError as e:
                logger.warning(
                    f'Order {order.order_number} line {line_item}: {e.error_message}'
                )
                stats.errors.append(
                    f'{order.order_number}#{line_item}: {e.error_message}'
                )
                continue
            if not await store.insert_campaign(campaign):
                # Created by a concurrent import since the lookup above
                logger.debug(
                    f'Order {order.order_number} line {line_item}: '
                    f'campaign already exists'
                )
                stats.skipped_existing += 1
                continue
            stats.campaigns_created += 1

    if stats.campaigns_created:
        logger.info(
            f'Imported {stats.campaigns_created} campaign(s) '
            f'from {stats.orders_checked} order(s)'
        )
    return stats
