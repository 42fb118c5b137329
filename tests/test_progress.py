"""
Tests for the progress ramp calculator.
"""

from datetime import datetime, timedelta, timezone

from campaign_server.progress import estimate_streams, estimated_removal_date

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestEstimateStreams:

    def test_zero_without_assignment(self):
        assert estimate_streams(None, 4, 3000, NOW) == 0

    def test_zero_without_slots(self):
        assert estimate_streams(NOW - timedelta(days=3), 0, 3000, NOW) == 0

    def test_four_playlists_for_a_day(self):
        assert estimate_streams(NOW - timedelta(hours=24), 4, 3000, NOW) == 2000

    def test_clamped_to_target(self):
        assert estimate_streams(NOW - timedelta(hours=36), 4, 3000, NOW) == 3000
        assert estimate_streams(NOW - timedelta(days=30), 4, 3000, NOW) == 3000

    def test_floors_partial_streams(self):
        # 1 hour with one playlist: 500 / 24 = 20.83
        assert estimate_streams(NOW - timedelta(hours=1), 1, 3000, NOW) == 20

    def test_future_assignment_is_zero(self):
        assert estimate_streams(NOW + timedelta(hours=5), 4, 3000, NOW) == 0

    def test_monotonic_and_bounded(self):
        assigned = NOW - timedelta(days=2)
        previous = -1
        for minutes in range(0, 5 * 24 * 60, 97):
            value = estimate_streams(
                assigned, 3, 5000, assigned + timedelta(minutes=minutes)
            )
            assert previous <= value <= 5000
            previous = value


class TestEstimatedRemovalDate:

    def test_days_rounded_up(self):
        assigned = NOW - timedelta(days=1)
        # 3000 / (4 * 500) = 1.5 -> 2 days
        assert estimated_removal_date(assigned, 4, 3000) == assigned + timedelta(days=2)

    def test_none_without_assignment(self):
        assert estimated_removal_date(None, 4, 3000) is None
        assert estimated_removal_date(NOW, 0, 3000) is None
