"""
Expiry Sweeper - converts elapsed hidden and grace windows into exclusions.

Features:
- Clears expired ``hidden_until`` snoozes; completed work is excluded instead
  of resurfacing
- Permanently excludes completed initial/removal actions whose 8-hour grace
  window has passed
- Idempotent: safe to run concurrently with itself and with admin mutations
  (every write is compare-and-swap through ``mutate_campaign``)
- A failure on one campaign is logged and counted; the sweep continues

There is no background loop. The sweep is triggered from outside: the
``POST /v1/marketing/sweep`` endpoint, the action-queue read, or
``run_server.py sweep`` from a cron job.

Usage:
    sweeper = ExpirySweeper(store)
    stats = await sweeper.sweep()

Configuration:
    The grace window is passed in by the caller, normally
    ``ServerConfig.grace_hours`` (``CAMPAIGN_GRACE_HOURS``, default 8).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import Campaign
from .state_machine import (
    GRACE_HOURS,
    ExpiryResult,
    expire_windows,
    is_fully_excluded,
)
from .store import CampaignStore, mutate_campaign

logger = logging.getLogger(__name__)


@dataclass
class SweepStats:
    """Statistics from a sweep run."""

    checked_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    campaigns_checked: int = 0
    expired_hidden: int = 0
    expired_completed: int = 0
    total_updated: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'checked_at': self.checked_at.isoformat(),
            'campaigns_checked': self.campaigns_checked,
            'expired_hidden': self.expired_hidden,
            'expired_completed': self.expired_completed,
            'total_updated': self.total_updated,
            'errors': self.errors,
        }


class ExpirySweeper:
    """Batch job reconciling stale visibility windows."""

    def __init__(self, store: CampaignStore, grace_hours: int = GRACE_HOURS):
        self.store = store
        self.grace_hours = grace_hours
        self._last_stats: Optional[SweepStats] = None

    @property
    def last_stats(self) -> Optional[SweepStats]:
        return self._last_stats

    async def sweep(self, now: Optional[datetime] = None) -> SweepStats:
        now = now or datetime.now(timezone.utc)
        stats = SweepStats(checked_at=now)

        for campaign in await self.store.list_campaigns():
            if is_fully_excluded(campaign):
                continue
            stats.campaigns_checked += 1
            try:
                result = await self._sweep_campaign(campaign, now)
            except Exception as e:
                logger.error(
                    f'Expiry sweep failed for campaign {campaign.id}: {e}',
                    exc_info=True,
                )
                stats.errors.append(f'{campaign.id}: {e}')
                continue

            if result.hidden_expired:
                stats.expired_hidden += 1
            if result.completed_expired:
                stats.expired_completed += 1
            if result.changed:
                stats.total_updated += 1

        if stats.total_updated or stats.errors:
            logger.info(
                f'Expiry sweep: hidden={stats.expired_hidden}, '
                f'completed={stats.expired_completed}, '
                f'updated={stats.total_updated}, errors={len(stats.errors)}'
            )
        self._last_stats = stats
        return stats

    async def _sweep_campaign(
        self, campaign: Campaign, now: datetime
    ) -> ExpiryResult:
        # Cheap pre-check on the listed copy; the real decision is re-made on
        # the fresh row inside mutate_campaign.
        preview = expire_windows(campaign.model_copy(deep=True), now, self.grace_hours)
        if not preview.changed:
            return preview

        outcome = ExpiryResult()

        def _mutate(c: Campaign) -> bool:
            nonlocal outcome
            outcome = expire_windows(c, now, self.grace_hours)
            return outcome.changed

        await mutate_campaign(self.store, campaign.id, _mutate)
        return outcome


# ============================================================================
# Global instance management
# ============================================================================

_sweeper: Optional[ExpirySweeper] = None


def get_sweeper() -> Optional[ExpirySweeper]:
    return _sweeper


def init_sweeper(store: CampaignStore, grace_hours: int = GRACE_HOURS) -> ExpirySweeper:
    global _sweeper
    _sweeper = ExpirySweeper(store, grace_hours=grace_hours)
    return _sweeper
