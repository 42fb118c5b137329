"""
Pydantic models for campaign lifecycle data structures.

Campaign rows, the playlist slot sum type, order/playlist/package records
consumed from the surrounding system, SMM order sets and purchase logs, and
the derived (never persisted) action queue items.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════


class CampaignState(str, Enum):
    """Lifecycle state, projected from a campaign's flags.

    AWAITING_INITIAL_ACTIONS -> INITIAL_ACTIONS_COMPLETE -> AWAITING_REMOVAL
    -> REMOVED -> EXCLUDED
    """

    AWAITING_INITIAL_ACTIONS = 'awaiting_initial_actions'
    INITIAL_ACTIONS_COMPLETE = 'initial_actions_complete'
    AWAITING_REMOVAL = 'awaiting_removal'
    REMOVED = 'removed'
    EXCLUDED = 'excluded'


class ActionType(str, Enum):
    INITIAL = 'initial'
    REMOVAL = 'removal'


class ActionStatus(str, Enum):
    OVERDUE = 'Overdue'
    NEEDED = 'Needed'
    COMPLETED = 'Completed'

    @property
    def priority(self) -> int:
        return _STATUS_PRIORITY[self]


_STATUS_PRIORITY = {
    ActionStatus.OVERDUE: 0,
    ActionStatus.NEEDED: 1,
    ActionStatus.COMPLETED: 2,
}


class PurchaseStatus(str, Enum):
    SUCCESS = 'success'
    FAILED = 'failed'


class PlaylistServiceType(str, Enum):
    """Panel services bought for a playlist itself rather than a song."""

    FOLLOWERS = 'playlist_followers'
    STREAMS = 'playlist_streams'


# ═══════════════════════════════════════════════════════════════════════════
# Playlist slots
# ═══════════════════════════════════════════════════════════════════════════


class RealSlot(BaseModel):
    """A concrete playlist directory entry."""

    kind: Literal['real'] = 'real'
    id: str
    name: str
    genre: Optional[str] = None


class EmptySlot(BaseModel):
    kind: Literal['empty'] = 'empty'


class RemovedSlot(BaseModel):
    """The song was taken off this slot's playlist."""

    kind: Literal['removed'] = 'removed'


Slot = Annotated[
    Union[RealSlot, EmptySlot, RemovedSlot], Field(discriminator='kind')
]


# ═══════════════════════════════════════════════════════════════════════════
# Campaign
# ═══════════════════════════════════════════════════════════════════════════


class Campaign(BaseModel):
    """One song + package fulfillment unit within an order."""

    id: str
    order_id: str
    order_number: str
    line_item: int = 0
    customer_name: str = ''
    song_name: str = ''
    song_link: str = ''
    track_id: Optional[str] = None
    package_name: str
    package_id: Optional[str] = None

    # Targets
    direct_streams_target: int = 0
    playlist_streams_target: int = 0
    time_on_playlists: int = 0
    playlist_assignments_needed: int = 0

    # Fulfillment flags
    direct_streams_confirmed: bool = False
    direct_streams_confirmed_at: Optional[datetime] = None
    playlists_added_confirmed: bool = False
    playlists_added_at: Optional[datetime] = None
    removed_from_playlists: bool = False
    removed_from_playlists_at: Optional[datetime] = None

    playlist_assignments: List[Slot] = Field(default_factory=list)

    # Visibility / exclusion
    hidden_until: Optional[datetime] = None
    initial_actions_excluded: bool = False
    removal_actions_excluded: bool = False

    # SMM submission: an in-flight claim, and panel orders placed without
    # an audit row (order set id -> panel order id)
    submission_claimed_at: Optional[datetime] = None
    unlogged_orders: Dict[str, str] = Field(default_factory=dict)

    # Bookkeeping
    campaign_status: str = 'Action Needed'
    created_at: datetime
    updated_at: datetime
    version: int = 0


# ═══════════════════════════════════════════════════════════════════════════
# Collaborator records (order store, playlist directory, package config)
# ═══════════════════════════════════════════════════════════════════════════


class OrderItem(BaseModel):
    package_name: str
    package_id: Optional[str] = None
    song_name: str = ''
    song_link: str = ''


class Order(BaseModel):
    id: str
    order_number: str
    customer_name: str = ''
    status: str = 'processing'
    # Music genre picked at checkout; drives automatic playlist assignment
    genre: Optional[str] = None
    created_at: datetime
    items: List[OrderItem] = Field(default_factory=list)


class Playlist(BaseModel):
    id: str
    name: str
    genre: Optional[str] = None
    is_active: bool = True


class PackageConfig(BaseModel):
    package_name: str
    direct_streams_target: int
    playlist_streams_target: int
    playlist_assignments_needed: int
    time_on_playlists: int


# ═══════════════════════════════════════════════════════════════════════════
# SMM order sets and purchase logs
# ═══════════════════════════════════════════════════════════════════════════


class OrderSet(BaseModel):
    """Admin-configured SMM panel order template tied to a package."""

    id: str
    package_name: str
    service_id: int
    quantity: int
    drip_runs: Optional[int] = None
    interval_minutes: Optional[int] = None
    display_order: int = 0
    price_per_1k: Optional[float] = None
    set_cost: Optional[float] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PurchaseLogEntry(BaseModel):
    """Immutable record of one external submission attempt."""

    id: str
    campaign_id: str
    order_set_id: str
    service_id: int
    quantity: int
    followiz_order_id: Optional[str] = None
    status: PurchaseStatus
    error_message: Optional[str] = None
    raw_response: Optional[str] = None
    cost: Optional[float] = None
    submitted_by: str = 'system'
    created_at: datetime


class PlaylistPurchaseLogEntry(BaseModel):
    """One panel order bought for a playlist (followers or streams)."""

    id: str
    playlist_id: str
    playlist_name: str
    playlist_link: str
    service_type: PlaylistServiceType
    order_set_id: str
    service_id: int
    quantity: int
    drip_runs: Optional[int] = None
    interval_minutes: Optional[int] = None
    followiz_order_id: Optional[str] = None
    status: PurchaseStatus
    error_message: Optional[str] = None
    raw_response: Optional[str] = None
    cost: Optional[float] = None
    submitted_by: str = 'system'
    created_at: datetime


# ═══════════════════════════════════════════════════════════════════════════
# Action queue (derived)
# ═══════════════════════════════════════════════════════════════════════════


class ActionFlags(BaseModel):
    direct_streams: bool = False
    add_to_playlists: bool = False
    remove_from_playlists: bool = False


class ActionItem(BaseModel):
    """One row of the admin action queue. Regenerated on every read."""

    id: str
    campaign_id: str
    action_type: ActionType
    status: ActionStatus
    due_by: str
    due_by_timestamp: datetime
    is_hidden: bool = False
    hidden_until: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    order_id: str
    order_number: str
    customer_name: str = ''
    song_name: str = ''
    song_number: Optional[int] = None
    package_name: str = ''
    actions: ActionFlags = Field(default_factory=ActionFlags)
    created_at: datetime
