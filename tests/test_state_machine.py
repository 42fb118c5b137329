"""
Tests for the campaign state machine: state projection, transitions and
window expiry.
"""

from datetime import datetime, timedelta, timezone

import pytest

from campaign_server.errors import ValidationError
from campaign_server.models import (
    Campaign,
    CampaignState,
    EmptySlot,
    RealSlot,
    RemovedSlot,
)
from campaign_server.state_machine import (
    confirm_direct_streams,
    confirm_playlists_added,
    confirm_removal,
    derive_state,
    expire_windows,
    hide,
    slot_count,
    status_label,
    unhide,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _real(i: int) -> RealSlot:
    return RealSlot(id=f'pl-{i}', name=f'Playlist {i}', genre='pop')


def _campaign(**overrides) -> Campaign:
    fields = dict(
        id='c-1',
        order_id='o-1',
        order_number='1001',
        package_name='LEGENDARY',
        playlist_streams_target=3000,
        playlist_assignments_needed=4,
        created_at=NOW - timedelta(days=3),
        updated_at=NOW - timedelta(days=3),
    )
    fields.update(overrides)
    return Campaign(**fields)


def _running(hours_on_playlists: float, **overrides) -> Campaign:
    return _campaign(
        direct_streams_confirmed=True,
        playlists_added_confirmed=True,
        playlists_added_at=NOW - timedelta(hours=hours_on_playlists),
        playlist_assignments=[_real(i) for i in range(4)],
        **overrides,
    )


class TestDeriveState:

    def test_new_campaign_awaits_initial_actions(self):
        assert derive_state(_campaign(), NOW) == CampaignState.AWAITING_INITIAL_ACTIONS

    def test_one_flag_is_not_enough(self):
        c = _campaign(direct_streams_confirmed=True)
        assert derive_state(c, NOW) == CampaignState.AWAITING_INITIAL_ACTIONS

    def test_running_below_target(self):
        assert derive_state(_running(24), NOW) == CampaignState.INITIAL_ACTIONS_COMPLETE

    def test_awaiting_removal_at_target(self):
        assert derive_state(_running(36), NOW) == CampaignState.AWAITING_REMOVAL

    def test_removed_and_excluded(self):
        removed = _running(48, removed_from_playlists=True)
        assert derive_state(removed, NOW) == CampaignState.REMOVED
        removed.removal_actions_excluded = True
        assert derive_state(removed, NOW) == CampaignState.EXCLUDED

    def test_labels(self):
        assert status_label(CampaignState.AWAITING_INITIAL_ACTIONS) == 'Action Needed'
        assert status_label(CampaignState.INITIAL_ACTIONS_COMPLETE) == 'Running'
        assert status_label(CampaignState.AWAITING_REMOVAL) == 'Removal Needed'
        assert status_label(CampaignState.REMOVED) == 'Completed'

    def test_slot_count_ignores_empty(self):
        c = _campaign(playlist_assignments=[_real(0), EmptySlot(), RemovedSlot()])
        assert slot_count(c) == 2


class TestTransitions:

    def test_confirm_direct_streams(self):
        c = _campaign()
        assert confirm_direct_streams(c, NOW) is True
        assert c.direct_streams_confirmed is True
        assert c.direct_streams_confirmed_at == NOW
        assert c.updated_at == NOW
        assert confirm_direct_streams(c, NOW) is False

    def test_confirm_playlists_requires_slots(self):
        with pytest.raises(ValidationError):
            confirm_playlists_added(_campaign(), NOW)

    def test_confirm_playlists_rejects_empty_slot(self):
        c = _campaign(playlist_assignments=[_real(0), EmptySlot(), _real(2), _real(3)])
        with pytest.raises(ValidationError) as exc:
            confirm_playlists_added(c, NOW)
        assert exc.value.data['empty_slots'] == [1]
        assert c.playlists_added_confirmed is False

    def test_confirm_playlists(self):
        c = _campaign(playlist_assignments=[_real(i) for i in range(4)])
        assert confirm_playlists_added(c, NOW) is True
        assert c.playlists_added_at == NOW
        assert confirm_playlists_added(c, NOW + timedelta(hours=1)) is False
        assert c.playlists_added_at == NOW

    def test_full_confirmation_updates_label(self):
        c = _campaign(playlist_assignments=[_real(i) for i in range(4)])
        confirm_direct_streams(c, NOW)
        confirm_playlists_added(c, NOW)
        assert c.campaign_status == 'Running'

    def test_removal_requires_playlists(self):
        with pytest.raises(ValidationError):
            confirm_removal(_campaign(), NOW)

    def test_removal(self):
        c = _running(40)
        assert confirm_removal(c, NOW) is True
        assert c.removed_from_playlists_at == NOW
        assert c.campaign_status == 'Completed'
        assert confirm_removal(c, NOW) is False

    def test_hide_and_unhide(self):
        c = _campaign()
        until = NOW + timedelta(hours=8)
        assert hide(c, until, NOW) is True
        assert c.hidden_until == until
        assert unhide(c) is True
        assert c.hidden_until is None
        assert unhide(c) is False

    def test_hide_in_past_rejected(self):
        with pytest.raises(ValidationError):
            hide(_campaign(), NOW - timedelta(minutes=1), NOW)


class TestExpireWindows:

    def test_expired_snooze_resurfaces_incomplete_work(self):
        c = _campaign(hidden_until=NOW - timedelta(minutes=1))
        result = expire_windows(c, NOW)
        assert result.hidden_expired is True
        assert result.completed_expired is False
        assert c.hidden_until is None
        assert c.initial_actions_excluded is False

    def test_expired_snooze_on_complete_work_excludes(self):
        c = _running(1, hidden_until=NOW - timedelta(minutes=1), updated_at=NOW - timedelta(hours=2))
        result = expire_windows(c, NOW)
        assert result.hidden_expired and result.completed_expired
        assert c.initial_actions_excluded is True
        assert c.removal_actions_excluded is False

    def test_grace_window(self):
        inside = _running(1, updated_at=NOW - timedelta(hours=7))
        assert expire_windows(inside, NOW).changed is False

        outside = _running(1, updated_at=NOW - timedelta(hours=9))
        assert expire_windows(outside, NOW).completed_expired is True
        assert outside.initial_actions_excluded is True

    def test_removed_grace_window(self):
        c = _running(
            72,
            removed_from_playlists=True,
            initial_actions_excluded=True,
            updated_at=NOW - timedelta(hours=9),
        )
        assert expire_windows(c, NOW).completed_expired is True
        assert c.removal_actions_excluded is True

    def test_idempotent(self):
        c = _running(1, updated_at=NOW - timedelta(hours=9))
        expire_windows(c, NOW)
        assert expire_windows(c, NOW).changed is False

    def test_future_snooze_untouched(self):
        until = NOW + timedelta(hours=1)
        c = _campaign(hidden_until=until)
        assert expire_windows(c, NOW).changed is False
        assert c.hidden_until == until
