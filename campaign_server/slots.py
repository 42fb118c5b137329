"""
Playlist slot manager.

A campaign's ``playlist_assignments`` is an ordered list of ``Slot`` values
(``RealSlot`` / ``EmptySlot`` / ``RemovedSlot``). The list is created lazily
on the first assignment to slot 0, sized from the package configuration, and
never shrinks afterwards; only slot contents change.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

from .errors import NotFoundError, ValidationError
from .models import (
    Campaign,
    EmptySlot,
    PackageConfig,
    RealSlot,
    RemovedSlot,
)
from .packages import resolve_package_config
from .store import CampaignStore, mutate_campaign

logger = logging.getLogger(__name__)

EMPTY_VALUE = 'empty'
REMOVED_VALUE = 'removed'

SlotValue = Union[RealSlot, EmptySlot, RemovedSlot]


def slot_to_value(slot: SlotValue) -> str:
    """Wire form of a slot: a playlist id, ``empty`` or ``removed``."""
    if isinstance(slot, RealSlot):
        return slot.id
    if isinstance(slot, EmptySlot):
        return EMPTY_VALUE
    if isinstance(slot, RemovedSlot):
        return REMOVED_VALUE
    raise TypeError(f'Unknown slot type: {type(slot).__name__}')


def needs_initialization(campaign: Campaign, index: int) -> bool:
    return not campaign.playlist_assignments and index == 0


def ensure_initialized(
    campaign: Campaign, package_config: PackageConfig, index: int
) -> bool:
    """Populate an empty slot list with Empty slots when slot 0 is targeted."""
    if not needs_initialization(campaign, index):
        return False

    needed = package_config.playlist_assignments_needed
    campaign.playlist_assignments_needed = needed
    campaign.playlist_assignments = [EmptySlot() for _ in range(needed)]
    logger.debug(f'Campaign {campaign.id}: initialized {needed} playlist slots')
    return True


def apply_slot(
    campaign: Campaign, index: int, slot: SlotValue, now: datetime
) -> bool:
    """
    Replace the slot at ``index``.

    Raises:
        ValidationError: ``index`` is outside the initialized slot list.
    """
    if index < 0 or index >= len(campaign.playlist_assignments):
        raise ValidationError(
            f'Slot index {index} is out of range',
            data={
                'campaign_id': campaign.id,
                'index': index,
                'slot_count': len(campaign.playlist_assignments),
            },
        )
    campaign.playlist_assignments[index] = slot
    campaign.updated_at = now
    return True


async def resolve_slot_value(store: CampaignStore, value: str) -> SlotValue:
    """
    Turn a wire value into a slot.

    Raises:
        ValidationError: Blank value.
        NotFoundError: Playlist is unknown or inactive.
    """
    value = (value or '').strip()
    if not value:
        raise ValidationError('Slot value is required')
    if value == EMPTY_VALUE:
        return EmptySlot()
    if value == REMOVED_VALUE:
        return RemovedSlot()

    playlist = await store.get_playlist(value)
    if playlist is None or not playlist.is_active:
        raise NotFoundError(
            f'Playlist {value} not found or inactive',
            data={'playlist_id': value},
        )
    return RealSlot(id=playlist.id, name=playlist.name, genre=playlist.genre)


def check_slot_unique(campaign: Campaign, index: int, slot: SlotValue) -> None:
    """
    Refuse a playlist that already fills another slot of the same campaign.

    Raises:
        ValidationError: The playlist is already assigned at another index.
    """
    if not isinstance(slot, RealSlot):
        return
    for i, existing in enumerate(campaign.playlist_assignments):
        if i != index and isinstance(existing, RealSlot) and existing.id == slot.id:
            raise ValidationError(
                f'Playlist {slot.name} is already assigned to slot {i}',
                data={
                    'campaign_id': campaign.id,
                    'playlist_id': slot.id,
                    'index': index,
                    'existing_index': i,
                },
            )


async def live_placements(
    store: CampaignStore, campaign: Campaign
) -> Dict[str, str]:
    """
    Playlists the campaign's track is live on through other campaigns.

    Maps playlist id to the id of the campaign holding it. Empty when the
    campaign has no track id.
    """
    placements: Dict[str, str] = {}
    if not campaign.track_id:
        return placements

    for other in await store.list_campaigns():
        if other.id == campaign.id or other.track_id != campaign.track_id:
            continue
        if not other.playlists_added_confirmed or other.removed_from_playlists:
            continue
        for s in other.playlist_assignments:
            if isinstance(s, RealSlot):
                placements.setdefault(s.id, other.id)
    return placements


async def _check_duplicate_placement(
    store: CampaignStore, campaign: Campaign, slot: RealSlot
) -> None:
    """Refuse to put the same track on a playlist where it is already live."""
    other_id = (await live_placements(store, campaign)).get(slot.id)
    if other_id is not None:
        raise ValidationError(
            f'Track is already on playlist {slot.name} '
            f'through campaign {other_id}',
            data={
                'campaign_id': campaign.id,
                'conflicting_campaign_id': other_id,
                'playlist_id': slot.id,
            },
        )


async def set_slot(
    store: CampaignStore,
    campaign_id: str,
    index: int,
    value: str,
    now: datetime,
) -> Campaign:
    """
    Assign ``value`` (playlist id, ``empty`` or ``removed``) to a slot.

    Raises:
        NotFoundError: Unknown campaign, or unknown/inactive playlist.
        ConfigurationError: The slot list must be initialized but the
            package cannot be resolved.
        ValidationError: Index out of range.
        ValidationError: The playlist already fills another slot, or the
            track is live on it through another campaign.
    """
    slot = await resolve_slot_value(store, value)
    campaign = await store.get_campaign(campaign_id)

    package_config: Optional[PackageConfig] = None
    if needs_initialization(campaign, index):
        package_config = resolve_package_config(
            campaign.package_name, await store.list_package_configs()
        )

    if isinstance(slot, RealSlot):
        await _check_duplicate_placement(store, campaign, slot)

    def _mutate(c: Campaign) -> bool:
        if package_config is not None:
            ensure_initialized(c, package_config, index)
        check_slot_unique(c, index, slot)
        return apply_slot(c, index, slot, now)

    updated = await mutate_campaign(store, campaign_id, _mutate)
    logger.info(
        f'Campaign {campaign_id}: slot {index} set to {slot_to_value(slot)}'
    )
    return updated


def slot_values(campaign: Campaign) -> List[str]:
    return [slot_to_value(s) for s in campaign.playlist_assignments]
