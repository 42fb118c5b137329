"""
Campaign storage.

``CampaignStore`` keeps campaigns and the collaborator records the engine
reads (orders, playlists, package configuration, order sets, purchase logs)
in memory. ``PostgresCampaignStore`` in ``database.py`` overrides the same
interface on top of asyncpg.

Campaign writes are compare-and-swap on an integer ``version``: a writer
passes the version it read and loses with ``ConflictError`` if someone else
wrote first. ``mutate_campaign`` wraps the read-modify-write cycle and retries
on conflict, so concurrent slot or flag updates never clobber each other.
"""

import logging
from asyncio import Lock
from typing import Callable, Dict, List, Optional

from .errors import ConflictError, NotFoundError
from .models import (
    Campaign,
    Order,
    OrderSet,
    PackageConfig,
    Playlist,
    PlaylistPurchaseLogEntry,
    PurchaseLogEntry,
)

logger = logging.getLogger(__name__)

MUTATE_ATTEMPTS = 3


class CampaignStore:
    """In-memory campaign store."""

    def __init__(self):
        self._campaigns: Dict[str, Campaign] = {}
        self._orders: Dict[str, Order] = {}
        self._playlists: Dict[str, Playlist] = {}
        self._packages: Dict[str, PackageConfig] = {}
        self._order_sets: Dict[str, OrderSet] = {}
        self._purchase_logs: List[PurchaseLogEntry] = []
        self._playlist_purchase_logs: List[PlaylistPurchaseLogEntry] = []
        self._lock = Lock()

    async def close(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    async def add_campaign(self, campaign: Campaign) -> Campaign:
        async with self._lock:
            self._campaigns[campaign.id] = campaign.model_copy(deep=True)
        return campaign

    async def insert_campaign(self, campaign: Campaign) -> bool:
        """
        Add a campaign unless its order line already has one.

        Returns True if the campaign was added.
        """
        async with self._lock:
            for existing in self._campaigns.values():
                if (
                    existing.order_id == campaign.order_id
                    and existing.line_item == campaign.line_item
                ):
                    return False
            self._campaigns[campaign.id] = campaign.model_copy(deep=True)
        return True

    async def get_campaign(self, campaign_id: str) -> Campaign:
        """Return a private copy of the campaign row."""
        async with self._lock:
            campaign = self._campaigns.get(campaign_id)
            if campaign is None:
                raise NotFoundError(f'Campaign {campaign_id} not found')
            return campaign.model_copy(deep=True)

    async def list_campaigns(self) -> List[Campaign]:
        async with self._lock:
            return [c.model_copy(deep=True) for c in self._campaigns.values()]

    async def find_campaign_for_line(
        self, order_id: str, line_item: int
    ) -> Optional[Campaign]:
        async with self._lock:
            for campaign in self._campaigns.values():
                if (
                    campaign.order_id == order_id
                    and campaign.line_item == line_item
                ):
                    return campaign.model_copy(deep=True)
        return None

    async def update_campaign(
        self, campaign: Campaign, expected_version: int
    ) -> Campaign:
        """
        Write a campaign if its stored version is still ``expected_version``.

        Raises:
            NotFoundError: The campaign does not exist.
            ConflictError: Another writer got there first.
        """
        async with self._lock:
            current = self._campaigns.get(campaign.id)
            if current is None:
                raise NotFoundError(f'Campaign {campaign.id} not found')
            if current.version != expected_version:
                raise ConflictError(
                    f'Campaign {campaign.id} was modified concurrently',
                    data={
                        'expected_version': expected_version,
                        'actual_version': current.version,
                    },
                )
            stored = campaign.model_copy(deep=True)
            stored.version = expected_version + 1
            self._campaigns[campaign.id] = stored
            return stored.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Orders (read-only to the engine)
    # ------------------------------------------------------------------

    async def add_order(self, order: Order) -> Order:
        async with self._lock:
            self._orders[order.id] = order.model_copy(deep=True)
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    async def list_orders(self) -> List[Order]:
        async with self._lock:
            return [o.model_copy(deep=True) for o in self._orders.values()]

    # ------------------------------------------------------------------
    # Playlist directory
    # ------------------------------------------------------------------

    async def add_playlist(self, playlist: Playlist) -> Playlist:
        async with self._lock:
            self._playlists[playlist.id] = playlist.model_copy()
        return playlist

    async def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        async with self._lock:
            playlist = self._playlists.get(playlist_id)
            return playlist.model_copy() if playlist else None

    async def list_playlists(self, active_only: bool = True) -> List[Playlist]:
        async with self._lock:
            playlists = [p.model_copy() for p in self._playlists.values()]
        if active_only:
            playlists = [p for p in playlists if p.is_active]
        return playlists

    # ------------------------------------------------------------------
    # Package configuration
    # ------------------------------------------------------------------

    async def put_package_config(self, config: PackageConfig) -> PackageConfig:
        async with self._lock:
            self._packages[config.package_name.upper()] = config.model_copy()
        return config

    async def list_package_configs(self) -> Dict[str, PackageConfig]:
        async with self._lock:
            return {k: v.model_copy() for k, v in self._packages.items()}

    # ------------------------------------------------------------------
    # Order sets
    # ------------------------------------------------------------------

    async def add_order_set(self, order_set: OrderSet) -> OrderSet:
        async with self._lock:
            self._order_sets[order_set.id] = order_set.model_copy()
        return order_set

    async def get_order_set(self, order_set_id: str) -> OrderSet:
        async with self._lock:
            order_set = self._order_sets.get(order_set_id)
        if order_set is None:
            raise NotFoundError(f'Order set {order_set_id} not found')
        return order_set.model_copy()

    async def save_order_set(self, order_set: OrderSet) -> OrderSet:
        async with self._lock:
            if order_set.id not in self._order_sets:
                raise NotFoundError(f'Order set {order_set.id} not found')
            self._order_sets[order_set.id] = order_set.model_copy()
        return order_set

    async def list_order_sets(
        self,
        package_name: Optional[str] = None,
        active_only: bool = True,
    ) -> List[OrderSet]:
        """Order sets sorted by ``display_order``."""
        async with self._lock:
            sets = [s.model_copy() for s in self._order_sets.values()]
        if package_name is not None:
            wanted = package_name.upper()
            sets = [s for s in sets if s.package_name.upper() == wanted]
        if active_only:
            sets = [s for s in sets if s.is_active]
        return sorted(sets, key=lambda s: (s.display_order, s.id))

    # ------------------------------------------------------------------
    # Purchase logs
    # ------------------------------------------------------------------

    async def add_purchase_log(self, entry: PurchaseLogEntry) -> PurchaseLogEntry:
        async with self._lock:
            self._purchase_logs.append(entry.model_copy())
        return entry

    async def list_purchase_logs(
        self, campaign_id: Optional[str] = None
    ) -> List[PurchaseLogEntry]:
        """Purchase logs in insertion (chronological) order."""
        async with self._lock:
            logs = [e.model_copy() for e in self._purchase_logs]
        if campaign_id is not None:
            logs = [e for e in logs if e.campaign_id == campaign_id]
        return logs

    async def add_playlist_purchase_log(
        self, entry: PlaylistPurchaseLogEntry
    ) -> PlaylistPurchaseLogEntry:
        async with self._lock:
            self._playlist_purchase_logs.append(entry.model_copy())
        return entry

    async def list_playlist_purchase_logs(
        self, playlist_id: Optional[str] = None
    ) -> List[PlaylistPurchaseLogEntry]:
        async with self._lock:
            logs = [e.model_copy() for e in self._playlist_purchase_logs]
        if playlist_id is not None:
            logs = [e for e in logs if e.playlist_id == playlist_id]
        return logs


async def mutate_campaign(
    store: CampaignStore,
    campaign_id: str,
    mutate: Callable[[Campaign], bool],
    attempts: int = MUTATE_ATTEMPTS,
) -> Campaign:
    """
    Read a campaign, apply ``mutate`` and write it back with compare-and-swap.

    ``mutate`` changes the campaign in place and returns True if anything
    changed; a False return skips the write. Exceptions raised by ``mutate``
    propagate before anything is written. On ``ConflictError`` the campaign
    is re-read and ``mutate`` re-applied, up to ``attempts`` times.
    """
    last_error: Optional[ConflictError] = None
    for attempt in range(1, attempts + 1):
        campaign = await store.get_campaign(campaign_id)
        expected_version = campaign.version
        if not mutate(campaign):
            return campaign
        try:
            return await store.update_campaign(campaign, expected_version)
        except ConflictError as e:
            last_error = e
            logger.debug(
                f'Campaign {campaign_id}: write conflict '
                f'(attempt {attempt}/{attempts})'
            )

    logger.warning(
        f'Campaign {campaign_id}: giving up after {attempts} conflicting writes'
    )
    raise last_error  # type: ignore[misc]
