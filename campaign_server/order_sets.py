"""
Order set administration.

An order set is a per-package template for one SMM panel order: service id,
quantity and optional drip feed (``drip_runs`` installments every
``interval_minutes``). Sets are soft-deleted by deactivation so purchase logs
keep pointing at them.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError, ExternalServiceError, ValidationError
from .models import OrderSet
from .packages import clean_package_name, normalize_package_name
from .smm_client import SMMPanelClient
from .store import CampaignStore

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = {
    'package_name',
    'service_id',
    'quantity',
    'drip_runs',
    'interval_minutes',
    'display_order',
    'is_active',
}
_PRICED_FIELDS = {'service_id', 'quantity', 'drip_runs'}


def effective_quantity(quantity: int, drip_runs: Optional[int]) -> int:
    """Total units delivered: ``quantity`` per run when drip-fed."""
    if drip_runs and drip_runs > 0:
        return quantity * drip_runs
    return quantity


def calculate_set_cost(
    quantity: int, drip_runs: Optional[int], price_per_1k: Optional[float]
) -> Optional[float]:
    if price_per_1k is None:
        return None
    return effective_quantity(quantity, drip_runs) / 1000 * price_per_1k


def validate_quantities(
    quantity: int, drip_runs: Optional[int], interval: Optional[int]
) -> None:
    if quantity <= 0:
        raise ValidationError('quantity must be positive')
    if drip_runs is not None and drip_runs < 0:
        raise ValidationError('drip_runs cannot be negative')
    if interval is not None and interval < 0:
        raise ValidationError('interval_minutes cannot be negative')
    if drip_runs and drip_runs > 0 and not interval:
        raise ValidationError('interval_minutes is required for a drip feed')


async def _lookup_price(
    client: Optional[SMMPanelClient], service_id: int
) -> Optional[float]:
    """Catalog price per 1000, or None when the panel can't be reached."""
    if client is None:
        return None
    try:
        prices = await client.service_prices([service_id])
    except (ConfigurationError, ExternalServiceError) as e:
        logger.warning(f'Price lookup for service {service_id} failed: {e}')
        return None
    return prices.get(service_id)


async def create_order_set(
    store: CampaignStore,
    client: Optional[SMMPanelClient],
    *,
    package_name: str,
    service_id: int,
    quantity: int,
    drip_runs: Optional[int] = None,
    interval_minutes: Optional[int] = None,
    display_order: Optional[int] = None,
) -> OrderSet:
    validate_quantities(quantity, drip_runs, interval_minutes)
    package = clean_package_name(package_name)
    if not package:
        raise ValidationError('package_name is required')

    if display_order is None:
        existing = await store.list_order_sets(package, active_only=False)
        display_order = max((s.display_order for s in existing), default=0) + 1

    price = await _lookup_price(client, service_id)
    now = datetime.now(timezone.utc)
    order_set = OrderSet(
        id=str(uuid.uuid4()),
        package_name=package,
        service_id=service_id,
        quantity=quantity,
        drip_runs=drip_runs,
        interval_minutes=interval_minutes,
        display_order=display_order,
        price_per_1k=price,
        set_cost=calculate_set_cost(quantity, drip_runs, price),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    await store.add_order_set(order_set)
    logger.info(
        f'Created order set {order_set.id} for {package} '
        f'(service={service_id}, quantity={quantity})'
    )
    return order_set


async def update_order_set(
    store: CampaignStore,
    client: Optional[SMMPanelClient],
    order_set_id: str,
    changes: Dict[str, Any],
) -> OrderSet:
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValidationError(
            f'Unknown order set fields: {", ".join(sorted(unknown))}'
        )

    order_set = await store.get_order_set(order_set_id)
    updated = order_set.model_copy(update=changes)
    if 'package_name' in changes:
        updated.package_name = clean_package_name(updated.package_name)
    validate_quantities(
        updated.quantity, updated.drip_runs, updated.interval_minutes
    )

    if _PRICED_FIELDS & set(changes) or updated.price_per_1k is None:
        price = await _lookup_price(client, updated.service_id)
        if price is not None or 'service_id' in changes:
            updated.price_per_1k = price
    updated.set_cost = calculate_set_cost(
        updated.quantity, updated.drip_runs, updated.price_per_1k
    )
    updated.updated_at = datetime.now(timezone.utc)

    await store.save_order_set(updated)
    return updated


async def deactivate_order_set(store: CampaignStore, order_set_id: str) -> OrderSet:
    order_set = await store.get_order_set(order_set_id)
    if not order_set.is_active:
        return order_set
    order_set.is_active = False
    order_set.updated_at = datetime.now(timezone.utc)
    await store.save_order_set(order_set)
    logger.info(f'Deactivated order set {order_set_id}')
    return order_set


async def active_order_sets(store: CampaignStore, package_name: str) -> List[OrderSet]:
    """Active sets for a package, exact name first, then the aliased name."""
    exact = clean_package_name(package_name)
    sets = await store.list_order_sets(exact)
    if not sets:
        normalized = normalize_package_name(package_name)
        if normalized != exact:
            sets = await store.list_order_sets(normalized)
    return sets
