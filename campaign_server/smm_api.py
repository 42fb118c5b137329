"""
SMM API - panel balance, live service prices, order set administration,
submission status, order polling and playlist purchases.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from . import database as db
from .auth import require_admin
from .errors import ConfigurationError, ValidationError
from .models import OrderSet, PlaylistPurchaseLogEntry, PlaylistServiceType
from .order_sets import create_order_set, deactivate_order_set, update_order_set
from .playlist_purchase import playlist_service_sets, submit_playlist_purchase
from .smm_client import MAX_STATUS_BATCH, SMMPanelClient, get_smm_client
from .submission import submission_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/v1/smm', tags=['smm'])


# ============================================================================
# Models
# ============================================================================


class OrderSetCreate(BaseModel):
    package_name: str = Field(..., min_length=1)
    service_id: int
    quantity: int = Field(..., gt=0)
    drip_runs: Optional[int] = Field(None, ge=0)
    interval_minutes: Optional[int] = Field(None, ge=0)
    display_order: Optional[int] = None


class OrderSetUpdate(BaseModel):
    package_name: Optional[str] = Field(None, min_length=1)
    service_id: Optional[int] = None
    quantity: Optional[int] = Field(None, gt=0)
    drip_runs: Optional[int] = Field(None, ge=0)
    interval_minutes: Optional[int] = Field(None, ge=0)
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class OrderSetListResponse(BaseModel):
    items: List[OrderSet]
    total: int
    total_cost: Optional[float] = None


class PlaylistPurchaseRequest(BaseModel):
    playlist_id: str = Field(..., min_length=1)
    playlist_link: str = Field(..., min_length=1)
    service_type: PlaylistServiceType
    quantity: int = Field(..., gt=0)
    drip_runs: Optional[int] = Field(None, ge=0)
    interval_minutes: Optional[int] = Field(None, ge=0)


# ============================================================================
# Helpers
# ============================================================================


def _client() -> SMMPanelClient:
    client = get_smm_client()
    if client is None:
        raise ConfigurationError('SMM panel client is not configured')
    return client


def _parse_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(',') if part.strip()]


# ============================================================================
# Panel passthrough
# ============================================================================


@router.get('/balance')
async def get_balance(admin: str = Depends(require_admin)):
    return await _client().balance()


@router.get('/service-prices')
async def get_service_prices(
    ids: str = Query(..., description='Comma-separated service ids'),
    admin: str = Depends(require_admin),
):
    try:
        service_ids = [int(i) for i in _parse_csv(ids)]
    except ValueError:
        raise ValidationError('ids must be comma-separated integers')
    prices = await _client().service_prices(service_ids)
    return {'prices': {str(k): v for k, v in prices.items()}}


@router.get('/orders/{order_id}/status')
async def get_order_status(order_id: str, admin: str = Depends(require_admin)):
    return await _client().order_status(order_id)


@router.get('/orders/status')
async def get_order_statuses(
    ids: str = Query(..., description='Comma-separated panel order ids'),
    admin: str = Depends(require_admin),
):
    order_ids = _parse_csv(ids)
    if len(order_ids) > MAX_STATUS_BATCH:
        raise ValidationError(f'At most {MAX_STATUS_BATCH} orders per request')
    return await _client().order_statuses(order_ids)


# ============================================================================
# Order sets
# ============================================================================


@router.get('/order-sets', response_model=OrderSetListResponse)
async def list_order_sets(
    package_name: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    admin: str = Depends(require_admin),
):
    sets = await db.get_store().list_order_sets(
        package_name, active_only=not include_inactive
    )
    costs = [s.set_cost for s in sets if s.is_active]
    total_cost = sum(c for c in costs if c is not None) if costs else None
    return OrderSetListResponse(items=sets, total=len(sets), total_cost=total_cost)


@router.post('/order-sets', response_model=OrderSet, status_code=201)
async def create_order_set_endpoint(
    body: OrderSetCreate, admin: str = Depends(require_admin)
):
    return await create_order_set(
        db.get_store(), get_smm_client(), **body.model_dump()
    )


@router.patch('/order-sets/{order_set_id}', response_model=OrderSet)
async def update_order_set_endpoint(
    order_set_id: str,
    body: OrderSetUpdate,
    admin: str = Depends(require_admin),
):
    changes = body.model_dump(exclude_unset=True)
    return await update_order_set(
        db.get_store(), get_smm_client(), order_set_id, changes
    )


@router.delete('/order-sets/{order_set_id}', response_model=OrderSet)
async def delete_order_set(order_set_id: str, admin: str = Depends(require_admin)):
    """Soft delete: the set is deactivated, never removed."""
    return await deactivate_order_set(db.get_store(), order_set_id)


# ============================================================================
# Submission status
# ============================================================================


@router.get('/submission-status')
async def get_submission_status(
    campaign_ids: str = Query(..., description='Comma-separated campaign ids'),
    admin: str = Depends(require_admin),
) -> Dict[str, Any]:
    return await submission_status(db.get_store(), _parse_csv(campaign_ids))


# ============================================================================
# Playlist purchases
# ============================================================================


@router.get('/playlist-services')
async def get_playlist_services(
    admin: str = Depends(require_admin),
) -> Dict[str, List[OrderSet]]:
    return await playlist_service_sets(db.get_store())


@router.post('/playlist-purchases')
async def create_playlist_purchase(
    body: PlaylistPurchaseRequest, admin: str = Depends(require_admin)
):
    """Buy followers or streams for a playlist through every configured set."""
    report = await submit_playlist_purchase(
        db.get_store(),
        get_smm_client(),
        **body.model_dump(),
        submitted_by=admin,
    )
    return report.to_dict()


@router.get(
    '/playlist-purchases', response_model=List[PlaylistPurchaseLogEntry]
)
async def list_playlist_purchases(
    playlist_id: Optional[str] = Query(None),
    admin: str = Depends(require_admin),
):
    return await db.get_store().list_playlist_purchase_logs(playlist_id)
