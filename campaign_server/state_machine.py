"""
Campaign state machine.

The lifecycle state is never stored. ``derive_state`` projects it from the
confirmation flags, the exclusion flags and a fresh progress estimate, and
every consumer (action queue, expiry sweeper, campaign listing) goes through
this module instead of re-reading the flags on its own.

States:
    AWAITING_INITIAL_ACTIONS  direct streams and/or playlist adds pending
    INITIAL_ACTIONS_COMPLETE  both confirmed, streaming toward target
    AWAITING_REMOVAL          playlist stream target reached
    REMOVED                   taken off playlists, inside grace window
    EXCLUDED                  retired for good

Transitions mutate the campaign in place and return True when something
changed, so they compose with ``store.mutate_campaign``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .errors import ValidationError
from .models import Campaign, CampaignState, EmptySlot
from .progress import estimate_streams, estimated_removal_date

logger = logging.getLogger(__name__)

GRACE_HOURS = 8

STATUS_LABELS = {
    CampaignState.AWAITING_INITIAL_ACTIONS: 'Action Needed',
    CampaignState.INITIAL_ACTIONS_COMPLETE: 'Running',
    CampaignState.AWAITING_REMOVAL: 'Removal Needed',
    CampaignState.REMOVED: 'Completed',
    CampaignState.EXCLUDED: 'Completed',
}


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def slot_count(campaign: Campaign) -> int:
    """Slots holding (or having held) a playlist."""
    return sum(
        1
        for slot in campaign.playlist_assignments
        if not isinstance(slot, EmptySlot)
    )


def estimated_streams(campaign: Campaign, now: datetime) -> int:
    return estimate_streams(
        campaign.playlists_added_at,
        slot_count(campaign),
        campaign.playlist_streams_target,
        now,
    )


def initial_actions_complete(campaign: Campaign) -> bool:
    return (
        campaign.direct_streams_confirmed
        and campaign.playlists_added_confirmed
    )


def removal_triggered(campaign: Campaign, now: datetime) -> bool:
    """Initial work done and the playlist stream target has been reached."""
    if not initial_actions_complete(campaign):
        return False
    return estimated_streams(campaign, now) >= campaign.playlist_streams_target


def derive_state(campaign: Campaign, now: datetime) -> CampaignState:
    if campaign.removal_actions_excluded:
        return CampaignState.EXCLUDED
    if campaign.removed_from_playlists:
        return CampaignState.REMOVED
    if removal_triggered(campaign, now):
        return CampaignState.AWAITING_REMOVAL
    if initial_actions_complete(campaign):
        return CampaignState.INITIAL_ACTIONS_COMPLETE
    return CampaignState.AWAITING_INITIAL_ACTIONS


def status_label(state: CampaignState) -> str:
    return STATUS_LABELS[state]


def completed_at(campaign: Campaign) -> datetime:
    """Timestamp the grace window of a completed action counts from."""
    return campaign.updated_at


def grace_expired(
    campaign: Campaign, now: datetime, grace_hours: int = GRACE_HOURS
) -> bool:
    return now - completed_at(campaign) > timedelta(hours=grace_hours)


def is_hidden(campaign: Campaign, now: datetime) -> bool:
    return campaign.hidden_until is not None and campaign.hidden_until > now


def is_fully_excluded(campaign: Campaign) -> bool:
    return campaign.initial_actions_excluded and campaign.removal_actions_excluded


def _refresh_label(campaign: Campaign, now: datetime) -> None:
    campaign.campaign_status = status_label(derive_state(campaign, now))


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def confirm_direct_streams(campaign: Campaign, now: datetime) -> bool:
    """Mark direct streams delivered. Only called after a full SMM success."""
    if campaign.direct_streams_confirmed:
        return False
    campaign.direct_streams_confirmed = True
    campaign.direct_streams_confirmed_at = now
    campaign.updated_at = now
    _refresh_label(campaign, now)
    logger.info(f'Campaign {campaign.id}: direct streams confirmed')
    return True


def confirm_playlists_added(campaign: Campaign, now: datetime) -> bool:
    """
    Mark the song as placed on every assigned playlist.

    Raises:
        ValidationError: Slots are uninitialized or an Empty slot remains.
    """
    if campaign.playlists_added_confirmed:
        return False
    if not campaign.playlist_assignments:
        raise ValidationError(
            'No playlists have been assigned yet',
            data={'campaign_id': campaign.id},
        )
    empty = [
        i
        for i, slot in enumerate(campaign.playlist_assignments)
        if isinstance(slot, EmptySlot)
    ]
    if empty:
        raise ValidationError(
            'Every playlist slot must be assigned before confirming',
            data={'campaign_id': campaign.id, 'empty_slots': empty},
        )

    campaign.playlists_added_confirmed = True
    campaign.playlists_added_at = now
    campaign.updated_at = now
    _refresh_label(campaign, now)
    logger.info(f'Campaign {campaign.id}: playlists added confirmed')
    return True


def confirm_removal(campaign: Campaign, now: datetime) -> bool:
    """
    Mark the song as taken off its playlists.

    Raises:
        ValidationError: Playlists were never confirmed as added.
    """
    if campaign.removed_from_playlists:
        return False
    if not campaign.playlists_added_confirmed:
        raise ValidationError(
            'Playlists must be confirmed as added before removal',
            data={'campaign_id': campaign.id},
        )
    campaign.removed_from_playlists = True
    campaign.removed_from_playlists_at = now
    campaign.updated_at = now
    _refresh_label(campaign, now)
    logger.info(f'Campaign {campaign.id}: removal confirmed')
    return True


def hide(campaign: Campaign, until: datetime, now: datetime) -> bool:
    """Snooze the campaign's action items until ``until``."""
    if until <= now:
        raise ValidationError(
            'hidden_until must be in the future',
            data={'campaign_id': campaign.id},
        )
    if campaign.hidden_until == until:
        return False
    campaign.hidden_until = until
    return True


def unhide(campaign: Campaign) -> bool:
    if campaign.hidden_until is None:
        return False
    campaign.hidden_until = None
    return True


# ---------------------------------------------------------------------------
# Window expiry
# ---------------------------------------------------------------------------


@dataclass
class ExpiryResult:
    hidden_expired: bool = False
    completed_expired: bool = False

    @property
    def changed(self) -> bool:
        return self.hidden_expired or self.completed_expired


def _exclude_completed_work(campaign: Campaign) -> bool:
    changed = False
    if initial_actions_complete(campaign) and not campaign.initial_actions_excluded:
        campaign.initial_actions_excluded = True
        changed = True
    if campaign.removed_from_playlists and not campaign.removal_actions_excluded:
        campaign.removal_actions_excluded = True
        changed = True
    return changed


def expire_windows(
    campaign: Campaign,
    now: datetime,
    grace_hours: int = GRACE_HOURS,
) -> ExpiryResult:
    """
    Turn elapsed hidden and grace windows into permanent exclusion flags.

    An expired snooze is cleared. If the snoozed work is already complete it
    becomes excluded instead of resurfacing. A completed action whose grace
    window has elapsed is excluded. Re-running on an already reconciled
    campaign changes nothing.
    """
    result = ExpiryResult()

    if campaign.hidden_until is not None and campaign.hidden_until <= now:
        campaign.hidden_until = None
        result.hidden_expired = True
        if _exclude_completed_work(campaign):
            result.completed_expired = True

    if grace_expired(campaign, now, grace_hours):
        if _exclude_completed_work(campaign):
            result.completed_expired = True

    if result.completed_expired:
        _refresh_label(campaign, now)
    return result


def describe(campaign: Campaign, now: datetime) -> dict:
    """Listing view of a campaign with its derived fields."""
    state = derive_state(campaign, now)
    removal_date: Optional[datetime] = estimated_removal_date(
        campaign.playlists_added_at,
        slot_count(campaign),
        campaign.playlist_streams_target,
    )
    return {
        'campaign': campaign,
        'state': state,
        'status_label': status_label(state),
        'estimated_streams': estimated_streams(campaign, now),
        'estimated_removal_date': removal_date,
        'is_hidden': is_hidden(campaign, now),
    }
