"""
SMM order submission service.

Submits a campaign's direct-stream order sets to the SMM panel, logs every
attempt, and confirms direct streams only when every set has succeeded.

Flow for ``submit_direct_streams``:
1. Load the campaign and its package's active order sets (display order).
2. No order sets -> ConfigurationError before anything is sent.
3. Claim the campaign; a second submission while one is in flight gets
   ConflictError. The claim is released when the run ends, and a claim
   older than ``SUBMISSION_CLAIM_MINUTES`` is treated as abandoned.
4. Fetch live catalog prices once (informational cost accounting).
5. Submit each set not already purchased successfully for this campaign;
   one set failing never stops the rest.
6. Log every attempt with the raw panel response.
7. All sets succeeded and logged -> confirm direct streams.

Retries resubmit only the failed sets, so a partial failure never produces
duplicate orders for the sets that went through. A set whose panel order was
placed but whose success log could not be written is remembered on the
campaign (``unlogged_orders``): it blocks confirmation, is never resubmitted,
and the next run retries the log write instead.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .errors import (
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    ValidationError,
)
from .models import Campaign, OrderSet, PurchaseStatus
from .order_sets import active_order_sets, calculate_set_cost, effective_quantity
from .purchase_log import latest_by_order_set, record_purchase, succeeded_order_sets
from .smm_client import SMMPanelClient, dump_raw
from .state_machine import confirm_direct_streams
from .store import CampaignStore, mutate_campaign

logger = logging.getLogger(__name__)

SUBMISSION_CLAIM_MINUTES = 15


@dataclass
class SetResult:
    """Outcome of one order set within a submission."""

    order_set_id: str
    service_id: int
    quantity: int
    effective_quantity: int
    success: bool
    followiz_order_id: Optional[str] = None
    error: Optional[str] = None
    price_per_1k: Optional[float] = None
    cost: Optional[float] = None
    previously_submitted: bool = False
    # Panel order placed, audit row missing
    unlogged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SubmissionReport:
    campaign_id: str
    all_succeeded: bool
    confirmed: bool
    results: List[SetResult] = field(default_factory=list)
    total_cost: float = 0.0
    balance: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'campaign_id': self.campaign_id,
            'all_succeeded': self.all_succeeded,
            'confirmed': self.confirmed,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'total_cost': round(self.total_cost, 4),
            'balance': self.balance,
            'results': [r.to_dict() for r in self.results],
        }


async def _live_prices(
    client: SMMPanelClient, order_sets: List[OrderSet]
) -> Dict[int, float]:
    try:
        return await client.service_prices({s.service_id for s in order_sets})
    except ExternalServiceError as e:
        # Catalog outage: submit without cost figures.
        logger.warning(f'Service catalog unavailable, costs not computed: {e}')
        return {}


def unlogged_message(order_id: Optional[str]) -> str:
    return f'Order {order_id} was placed but its purchase log could not be written'


async def _submit_set(
    store: CampaignStore,
    client: SMMPanelClient,
    campaign: Campaign,
    order_set: OrderSet,
    price: Optional[float],
    submitted_by: str,
) -> SetResult:
    quantity = effective_quantity(order_set.quantity, order_set.drip_runs)
    result = SetResult(
        order_set_id=order_set.id,
        service_id=order_set.service_id,
        quantity=order_set.quantity,
        effective_quantity=quantity,
        success=False,
        price_per_1k=price,
    )

    raw_response: Optional[str] = None
    try:
        body = await client.add_order(
            order_set.service_id,
            campaign.song_link,
            order_set.quantity,
            runs=order_set.drip_runs,
            interval=order_set.interval_minutes,
        )
        raw_response = dump_raw(body)
        result.success = True
        result.followiz_order_id = str(body['order'])
        result.cost = calculate_set_cost(
            order_set.quantity, order_set.drip_runs, price
        )
    except ExternalServiceError as e:
        raw_response = e.raw_response
        result.error = e.error_message
        logger.warning(
            f'Campaign {campaign.id}: order set {order_set.id} '
            f'(service {order_set.service_id}) failed: {e.error_message}'
        )

    entry = await record_purchase(
        store,
        campaign_id=campaign.id,
        order_set=order_set,
        quantity=quantity,
        status=PurchaseStatus.SUCCESS if result.success else PurchaseStatus.FAILED,
        followiz_order_id=result.followiz_order_id,
        error_message=result.error,
        raw_response=raw_response,
        cost=result.cost,
        submitted_by=submitted_by,
    )
    if entry is None and result.success:
        result.success = False
        result.unlogged = True
        result.error = unlogged_message(result.followiz_order_id)
        logger.error(
            f'Campaign {campaign.id}: order set {order_set.id} placed as panel '
            f'order {result.followiz_order_id} without a purchase log'
        )
    return result


async def _log_unlogged_set(
    store: CampaignStore,
    campaign_id: str,
    order_set: OrderSet,
    order_id: str,
    submitted_by: str,
) -> SetResult:
    """Write the missing success log for a set placed on an earlier run."""
    quantity = effective_quantity(order_set.quantity, order_set.drip_runs)
    entry = await record_purchase(
        store,
        campaign_id=campaign_id,
        order_set=order_set,
        quantity=quantity,
        status=PurchaseStatus.SUCCESS,
        followiz_order_id=order_id,
        submitted_by=submitted_by,
    )
    result = SetResult(
        order_set_id=order_set.id,
        service_id=order_set.service_id,
        quantity=order_set.quantity,
        effective_quantity=quantity,
        success=entry is not None,
        followiz_order_id=order_id,
        previously_submitted=True,
    )
    if entry is None:
        result.unlogged = True
        result.error = unlogged_message(order_id)
    else:
        logger.info(
            f'Campaign {campaign_id}: recorded panel order {order_id} '
            f'for order set {order_set.id}'
        )
    return result


def _claim_submission(now: datetime):
    def _mutate(c: Campaign) -> bool:
        if c.direct_streams_confirmed:
            raise ValidationError(
                'Direct streams are already confirmed for this campaign',
                data={'campaign_id': c.id},
            )
        claimed_at = c.submission_claimed_at
        if claimed_at is not None and now - claimed_at < timedelta(
            minutes=SUBMISSION_CLAIM_MINUTES
        ):
            raise ConflictError(
                'A submission is already in progress for this campaign',
                data={
                    'campaign_id': c.id,
                    'claimed_at': claimed_at.isoformat(),
                },
            )
        if claimed_at is not None:
            logger.warning(
                f'Campaign {c.id}: taking over submission claim from '
                f'{claimed_at.isoformat()}'
            )
        c.submission_claimed_at = now
        return True

    return _mutate


async def submit_direct_streams(
    store: CampaignStore,
    client: Optional[SMMPanelClient],
    campaign_id: str,
    submitted_by: str = 'system',
    now: Optional[datetime] = None,
) -> SubmissionReport:
    """
    Submit every outstanding order set for a campaign.

    Raises:
        NotFoundError: Unknown campaign.
        ValidationError: Already confirmed, or the campaign has no song link.
        ConfigurationError: No panel client/API key, or no order sets.
        ConflictError: Another submission for the campaign is in flight.
    """
    if client is None:
        raise ConfigurationError('SMM panel client is not configured')
    if not client.api_key:
        raise ConfigurationError('SMM panel API key is not configured')

    campaign = await store.get_campaign(campaign_id)
    if campaign.direct_streams_confirmed:
        raise ValidationError(
            'Direct streams are already confirmed for this campaign',
            data={'campaign_id': campaign_id},
        )
    if not campaign.song_link:
        raise ValidationError(
            'Campaign has no song link to submit',
            data={'campaign_id': campaign_id},
        )

    order_sets = await active_order_sets(store, campaign.package_name)
    if not order_sets:
        raise ConfigurationError(
            f'No order sets configured for package {campaign.package_name}',
            data={'package_name': campaign.package_name},
        )

    now = now or datetime.now(timezone.utc)
    campaign = await mutate_campaign(store, campaign_id, _claim_submission(now))

    report = SubmissionReport(
        campaign_id=campaign_id, all_succeeded=False, confirmed=False
    )
    unlogged = dict(campaign.unlogged_orders)
    pending: List[OrderSet] = []

    def _release(c: Campaign) -> bool:
        c.submission_claimed_at = None
        c.unlogged_orders = unlogged
        if report.all_succeeded:
            confirm_direct_streams(c, now)
        return True

    try:
        already_done = set(await succeeded_order_sets(store, campaign_id))
        for order_set_id in already_done:
            unlogged.pop(order_set_id, None)
        pending = [
            s for s in order_sets
            if s.id not in already_done and s.id not in unlogged
        ]
        prices = await _live_prices(client, pending) if pending else {}

        for order_set in order_sets:
            if order_set.id in already_done:
                report.results.append(
                    SetResult(
                        order_set_id=order_set.id,
                        service_id=order_set.service_id,
                        quantity=order_set.quantity,
                        effective_quantity=effective_quantity(
                            order_set.quantity, order_set.drip_runs
                        ),
                        success=True,
                        previously_submitted=True,
                    )
                )
                continue

            if order_set.id in unlogged:
                result = await _log_unlogged_set(
                    store,
                    campaign_id,
                    order_set,
                    unlogged[order_set.id],
                    submitted_by,
                )
                if result.success:
                    del unlogged[order_set.id]
                report.results.append(result)
                continue

            result = await _submit_set(
                store,
                client,
                campaign,
                order_set,
                prices.get(order_set.service_id),
                submitted_by,
            )
            if result.unlogged:
                unlogged[order_set.id] = result.followiz_order_id
            report.results.append(result)
            if result.cost is not None:
                report.total_cost += result.cost

        report.all_succeeded = all(r.success for r in report.results)
    finally:
        await mutate_campaign(store, campaign_id, _release)

    report.confirmed = report.all_succeeded

    try:
        report.balance = await client.balance()
    except ExternalServiceError as e:
        logger.warning(f'Could not refresh panel balance: {e}')

    logger.info(
        f'Campaign {campaign_id}: submitted {len(pending)} order set(s), '
        f'succeeded={report.succeeded}, failed={report.failed}, '
        f'confirmed={report.confirmed}'
    )
    return report


async def submission_status(
    store: CampaignStore, campaign_ids: List[str]
) -> Dict[str, Dict[str, Any]]:
    """Latest attempt per order set, summarized per campaign."""
    status: Dict[str, Dict[str, Any]] = {}
    for campaign_id in campaign_ids:
        latest = await latest_by_order_set(store, campaign_id)
        entries = list(latest.values())
        status[campaign_id] = {
            'has_submissions': bool(entries),
            'has_failures': any(
                e.status == PurchaseStatus.FAILED for e in entries
            ),
            'all_success': bool(entries)
            and all(e.status == PurchaseStatus.SUCCESS for e in entries),
            'order_sets': {
                order_set_id: {
                    'status': e.status.value,
                    'followiz_order_id': e.followiz_order_id,
                    'error_message': e.error_message,
                    'submitted_at': e.created_at.isoformat(),
                }
                for order_set_id, e in latest.items()
            },
        }
    return status
