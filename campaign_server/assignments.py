"""
Automatic playlist assignment.

Fills a campaign's Empty slots from the playlist directory: playlists whose
genre matches the customer's genre first (case-insensitive), then
``General`` playlists. A playlist never fills two slots of one campaign, and
playlists the track is already live on through another campaign are
skipped. Slots already holding a playlist or marked removed are left alone.

The genre is the one passed in, else the genre picked at checkout on the
order, else ``General``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from .errors import CampaignEngineError, ValidationError
from .models import Campaign, EmptySlot, PackageConfig, Playlist, RealSlot
from .packages import resolve_package_config
from .slots import (
    apply_slot,
    check_slot_unique,
    ensure_initialized,
    live_placements,
)
from .store import CampaignStore, mutate_campaign

logger = logging.getLogger(__name__)

DEFAULT_GENRE = 'General'


def _genre_key(genre: Optional[str]) -> str:
    return (genre or '').strip().lower()


def pick_playlists(
    playlists: Iterable[Playlist],
    genre: str,
    count: int,
    exclude: Optional[Set[str]] = None,
) -> List[Playlist]:
    """
    Choose up to ``count`` active playlists for ``genre``.

    Genre matches come first, then General playlists, each group in name
    order. Ids in ``exclude`` are never picked.
    """
    exclude = exclude or set()
    candidates = sorted(
        (p for p in playlists if p.is_active and p.id not in exclude),
        key=lambda p: (p.name.lower(), p.id),
    )
    wanted = _genre_key(genre)
    general = _genre_key(DEFAULT_GENRE)

    picked: List[Playlist] = []
    for key in (wanted, general):
        for playlist in candidates:
            if len(picked) >= count:
                return picked
            if _genre_key(playlist.genre) == key and playlist not in picked:
                picked.append(playlist)
    return picked


async def resolve_genre(
    store: CampaignStore, campaign: Campaign, genre: Optional[str] = None
) -> str:
    if genre and genre.strip():
        return genre.strip()
    order = await store.get_order(campaign.order_id)
    if order is not None and order.genre and order.genre.strip():
        return order.genre.strip()
    return DEFAULT_GENRE


@dataclass
class AssignmentResult:
    campaign_id: str
    genre: str
    assigned: List[str] = field(default_factory=list)
    needed: int = 0
    campaign: Optional[Campaign] = None

    @property
    def shortfall(self) -> int:
        return max(self.needed - len(self.assigned), 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'campaign_id': self.campaign_id,
            'genre': self.genre,
            'assigned': self.assigned,
            'needed': self.needed,
            'shortfall': self.shortfall,
        }


async def generate_assignments(
    store: CampaignStore,
    campaign_id: str,
    genre: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AssignmentResult:
    """
    Fill a campaign's Empty slots with suggested playlists.

    Raises:
        NotFoundError: Unknown campaign.
        ConfigurationError: The slot list is uninitialized and the package
            cannot be resolved.
        ValidationError: Playlists are already confirmed added.
    """
    now = now or datetime.now(timezone.utc)
    campaign = await store.get_campaign(campaign_id)
    if campaign.playlists_added_confirmed:
        raise ValidationError(
            'Playlists are already confirmed for this campaign',
            data={'campaign_id': campaign_id},
        )

    package_config: Optional[PackageConfig] = None
    if not campaign.playlist_assignments:
        package_config = resolve_package_config(
            campaign.package_name, await store.list_package_configs()
        )

    result = AssignmentResult(
        campaign_id=campaign_id,
        genre=await resolve_genre(store, campaign, genre),
    )
    playlists = await store.list_playlists()
    live = set(await live_placements(store, campaign))

    def _mutate(c: Campaign) -> bool:
        result.assigned = []
        initialized = False
        if package_config is not None:
            initialized = ensure_initialized(c, package_config, 0)

        open_slots = [
            i for i, s in enumerate(c.playlist_assignments)
            if isinstance(s, EmptySlot)
        ]
        result.needed = len(open_slots)
        used = {
            s.id for s in c.playlist_assignments if isinstance(s, RealSlot)
        }
        picks = pick_playlists(
            playlists, result.genre, len(open_slots), exclude=used | live
        )
        for index, playlist in zip(open_slots, picks):
            slot = RealSlot(id=playlist.id, name=playlist.name, genre=playlist.genre)
            check_slot_unique(c, index, slot)
            apply_slot(c, index, slot, now)
            result.assigned.append(playlist.id)
        return initialized or bool(result.assigned)

    result.campaign = await mutate_campaign(store, campaign_id, _mutate)

    if result.shortfall:
        logger.warning(
            f'Campaign {campaign_id}: only {len(result.assigned)} of '
            f'{result.needed} playlists available for genre {result.genre}'
        )
    logger.info(
        f'Campaign {campaign_id}: assigned {len(result.assigned)} playlists '
        f'({result.genre})'
    )
    return result


# ============================================================================
# Batch assignment
# ============================================================================


@dataclass
class AutoAssignStats:
    campaigns_checked: int = 0
    campaigns_updated: int = 0
    slots_filled: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'campaigns_checked': self.campaigns_checked,
            'campaigns_updated': self.campaigns_updated,
            'slots_filled': self.slots_filled,
            'errors': self.errors,
        }


def _untouched(campaign: Campaign) -> bool:
    if campaign.playlists_added_confirmed or campaign.initial_actions_excluded:
        return False
    return all(isinstance(s, EmptySlot) for s in campaign.playlist_assignments)


async def generate_all_assignments(
    store: CampaignStore, now: Optional[datetime] = None
) -> AutoAssignStats:
    """
    Suggest playlists for every campaign nobody has started assigning.

    Campaigns with any slot already filled or removed are skipped so manual
    choices are never second-guessed. A failure on one campaign is logged
    and counted.
    """
    now = now or datetime.now(timezone.utc)
    stats = AutoAssignStats()

    for campaign in await store.list_campaigns():
        if not _untouched(campaign):
            continue
        stats.campaigns_checked += 1
        try:
            result = await generate_assignments(store, campaign.id, now=now)
        except CampaignEngineError as e:
            logger.warning(f'Campaign {campaign.id}: assignment failed: {e}')
            stats.errors.append(f'{campaign.id}: {e}')
            continue
        if result.assigned:
            stats.campaigns_updated += 1
            stats.slots_filled += len(result.assigned)

    logger.info(
        f'Auto-assignment: checked={stats.campaigns_checked}, '
        f'updated={stats.campaigns_updated}, slots={stats.slots_filled}'
    )
    return stats
