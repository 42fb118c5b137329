"""
Playlist purchases.

Buys followers or streams for a playlist in the network, as opposed to a
customer's song. The panel services to use are ordinary order sets filed
under the reserved package names ``PLAYLIST_FOLLOWERS`` and
``PLAYLIST_STREAMS``; quantity and drip feed come from the admin per
purchase, not from the order set.

Every active set for the service type is submitted once, each attempt is
logged to the playlist purchase log, and the panel balance is read before
and after so the admin sees what the purchase cost.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import (
    ConfigurationError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from .models import OrderSet, PlaylistServiceType, PurchaseStatus
from .order_sets import calculate_set_cost, effective_quantity, validate_quantities
from .purchase_log import record_playlist_purchase
from .smm_client import SMMPanelClient, dump_raw
from .store import CampaignStore
from .submission import SetResult, unlogged_message

logger = logging.getLogger(__name__)

PLAYLIST_SERVICE_PACKAGES = {
    PlaylistServiceType.FOLLOWERS: 'PLAYLIST_FOLLOWERS',
    PlaylistServiceType.STREAMS: 'PLAYLIST_STREAMS',
}


@dataclass
class PlaylistPurchaseReport:
    playlist_id: str
    service_type: PlaylistServiceType
    all_succeeded: bool = False
    results: List[SetResult] = field(default_factory=list)
    total_cost: float = 0.0
    balance_before: Optional[Dict[str, Any]] = None
    balance_after: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'playlist_id': self.playlist_id,
            'service_type': self.service_type.value,
            'all_succeeded': self.all_succeeded,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'total_cost': round(self.total_cost, 4),
            'balance_before': self.balance_before,
            'balance_after': self.balance_after,
            'results': [r.to_dict() for r in self.results],
        }


async def _balance(client: SMMPanelClient) -> Optional[Dict[str, Any]]:
    try:
        return await client.balance()
    except ExternalServiceError as e:
        logger.warning(f'Could not read panel balance: {e}')
        return None


async def playlist_service_sets(store: CampaignStore) -> Dict[str, List[OrderSet]]:
    """Active order sets per playlist service type."""
    return {
        service_type.value: await store.list_order_sets(package)
        for service_type, package in PLAYLIST_SERVICE_PACKAGES.items()
    }


async def submit_playlist_purchase(
    store: CampaignStore,
    client: Optional[SMMPanelClient],
    *,
    playlist_id: str,
    playlist_link: str,
    service_type: PlaylistServiceType,
    quantity: int,
    drip_runs: Optional[int] = None,
    interval_minutes: Optional[int] = None,
    submitted_by: str = 'system',
) -> PlaylistPurchaseReport:
    """
    Order ``service_type`` for a playlist through every configured set.

    Raises:
        ConfigurationError: No panel client/API key, or no order sets for
            the service type.
        NotFoundError: Unknown playlist.
        ValidationError: Blank link, or bad quantity/drip settings.
    """
    if client is None:
        raise ConfigurationError('SMM panel client is not configured')
    if not client.api_key:
        raise ConfigurationError('SMM panel API key is not configured')

    playlist_link = (playlist_link or '').strip()
    if not playlist_link:
        raise ValidationError('playlist_link is required')
    drip_runs = drip_runs or None
    interval_minutes = interval_minutes or None
    validate_quantities(quantity, drip_runs, interval_minutes)

    playlist = await store.get_playlist(playlist_id)
    if playlist is None:
        raise NotFoundError(
            f'Playlist {playlist_id} not found',
            data={'playlist_id': playlist_id},
        )

    package = PLAYLIST_SERVICE_PACKAGES[service_type]
    order_sets = await store.list_order_sets(package)
    if not order_sets:
        raise ConfigurationError(
            f'No order sets configured for {service_type.value}',
            data={'package_name': package},
        )

    report = PlaylistPurchaseReport(
        playlist_id=playlist_id, service_type=service_type
    )
    report.balance_before = await _balance(client)

    delivered = effective_quantity(quantity, drip_runs)
    for order_set in order_sets:
        result = SetResult(
            order_set_id=order_set.id,
            service_id=order_set.service_id,
            quantity=quantity,
            effective_quantity=delivered,
            success=False,
            price_per_1k=order_set.price_per_1k,
        )
        raw_response: Optional[str] = None
        try:
            body = await client.add_order(
                order_set.service_id,
                playlist_link,
                quantity,
                runs=drip_runs,
                interval=interval_minutes,
            )
            raw_response = dump_raw(body)
            result.success = True
            result.followiz_order_id = str(body['order'])
            result.cost = calculate_set_cost(
                quantity, drip_runs, order_set.price_per_1k
            )
        except ExternalServiceError as e:
            raw_response = e.raw_response
            result.error = e.error_message
            logger.warning(
                f'Playlist {playlist_id}: {service_type.value} order on '
                f'service {order_set.service_id} failed: {e.error_message}'
            )

        entry = await record_playlist_purchase(
            store,
            playlist=playlist,
            playlist_link=playlist_link,
            service_type=service_type,
            order_set=order_set,
            quantity=delivered,
            status=PurchaseStatus.SUCCESS if result.success else PurchaseStatus.FAILED,
            drip_runs=drip_runs,
            interval_minutes=interval_minutes,
            followiz_order_id=result.followiz_order_id,
            error_message=result.error,
            raw_response=raw_response,
            cost=result.cost,
            submitted_by=submitted_by,
        )
        if entry is None and result.success:
            result.unlogged = True
            result.error = unlogged_message(result.followiz_order_id)

        report.results.append(result)
        if result.cost is not None:
            report.total_cost += result.cost

    report.all_succeeded = all(r.success for r in report.results)
    report.balance_after = await _balance(client)

    logger.info(
        f'Playlist {playlist_id}: {service_type.value} purchase, '
        f'succeeded={report.succeeded}, failed={report.failed}'
    )
    return report
