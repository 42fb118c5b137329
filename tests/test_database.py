"""
Tests for the PostgreSQL campaign store.

The asyncpg pool is mocked; these tests check the compare-and-swap write
path and row decoding without a live database.
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from campaign_server.config import ServerConfig
from campaign_server.database import (
    PostgresCampaignStore,
    _INSERT_CAMPAIGN_IF_ABSENT,
    _UPDATE_CAMPAIGN,
    create_store,
)
from campaign_server.errors import ConflictError, NotFoundError
from campaign_server.models import (
    Campaign,
    EmptySlot,
    OrderSet,
    PlaylistPurchaseLogEntry,
    PlaylistServiceType,
    PurchaseStatus,
    RealSlot,
)
from campaign_server.store import CampaignStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_mock_pool():
    mock_conn = AsyncMock()
    mock_pool = MagicMock()
    mock_cm = MagicMock()
    mock_cm.__aenter__ = AsyncMock(return_value=mock_conn)
    mock_cm.__aexit__ = AsyncMock(return_value=False)
    mock_pool.acquire.return_value = mock_cm
    return mock_pool, mock_conn


def _campaign() -> Campaign:
    return Campaign(
        id='c-1',
        order_id='o-1',
        order_number='1001',
        package_name='MOMENTUM',
        playlist_assignments=[RealSlot(id='pl-1', name='Chill'), EmptySlot()],
        created_at=NOW,
        updated_at=NOW,
        version=3,
    )


def _row(campaign: Campaign, **overrides) -> dict:
    row = campaign.model_dump()
    row['playlist_assignments'] = json.dumps(row['playlist_assignments'])
    row.update(overrides)
    return row


class TestCampaignRows:

    @pytest.mark.asyncio
    async def test_get_campaign_decodes_slots(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.fetchrow.return_value = _row(_campaign())

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            campaign = await PostgresCampaignStore('postgresql://test').get_campaign('c-1')

        assert isinstance(campaign.playlist_assignments[0], RealSlot)
        assert isinstance(campaign.playlist_assignments[1], EmptySlot)
        assert campaign.version == 3

    @pytest.mark.asyncio
    async def test_get_missing_campaign(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.fetchrow.return_value = None

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            with pytest.raises(NotFoundError):
                await PostgresCampaignStore('postgresql://test').get_campaign('nope')

    @pytest.mark.asyncio
    async def test_update_uses_expected_version(self):
        mock_pool, mock_conn = _make_mock_pool()
        campaign = _campaign()
        mock_conn.fetchrow.return_value = _row(campaign, version=4)

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            stored = await PostgresCampaignStore('postgresql://test').update_campaign(campaign, 3)

        assert stored.version == 4
        args = mock_conn.fetchrow.call_args.args
        assert args[0] == _UPDATE_CAMPAIGN
        assert args[1] == 'c-1'
        assert args[-1] == 3
        assert 'WHERE id = $1 AND version = $' in args[0]

    @pytest.mark.asyncio
    async def test_update_conflict(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.fetchrow.return_value = None
        mock_conn.fetchval.return_value = 5

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            with pytest.raises(ConflictError) as exc:
                await PostgresCampaignStore('postgresql://test').update_campaign(_campaign(), 3)

        assert exc.value.data['actual_version'] == 5

    @pytest.mark.asyncio
    async def test_update_missing_row(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.fetchrow.return_value = None
        mock_conn.fetchval.return_value = None

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            with pytest.raises(NotFoundError):
                await PostgresCampaignStore('postgresql://test').update_campaign(_campaign(), 3)

    @pytest.mark.asyncio
    async def test_insert_ignores_existing_order_line(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.execute.return_value = 'INSERT 0 0'

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            inserted = await PostgresCampaignStore('postgresql://test').insert_campaign(_campaign())

        assert inserted is False
        query = mock_conn.execute.call_args.args[0]
        assert query == _INSERT_CAMPAIGN_IF_ABSENT
        assert query.endswith('ON CONFLICT (order_id, line_item) DO NOTHING')
        assert mock_conn.execute.call_args.args[-1] == 3

    @pytest.mark.asyncio
    async def test_insert_new_order_line(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.execute.return_value = 'INSERT 0 1'

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            inserted = await PostgresCampaignStore('postgresql://test').insert_campaign(_campaign())

        assert inserted is True


class TestOrderSetRows:

    @pytest.mark.asyncio
    async def test_save_missing_order_set(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.execute.return_value = 'UPDATE 0'
        order_set = OrderSet(id='s-1', package_name='DOMINATE', service_id=1, quantity=10)

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            with pytest.raises(NotFoundError):
                await PostgresCampaignStore('postgresql://test').save_order_set(order_set)

    @pytest.mark.asyncio
    async def test_list_filters_by_package(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.fetch.return_value = [
            {'id': 's-1', 'package_name': 'DOMINATE', 'service_id': 1, 'quantity': 10,
             'drip_runs': None, 'interval_minutes': None, 'display_order': 1,
             'price_per_1k': None, 'set_cost': None, 'is_active': True,
             'created_at': NOW, 'updated_at': NOW},
        ]

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            sets = await PostgresCampaignStore('postgresql://test').list_order_sets('dominate')

        assert [s.id for s in sets] == ['s-1']
        query, param = mock_conn.fetch.call_args.args
        assert 'UPPER(package_name) = $1' in query
        assert 'is_active = TRUE' in query
        assert param == 'DOMINATE'


class TestPlaylistPurchaseLogRows:

    @pytest.mark.asyncio
    async def test_add_writes_enum_values(self):
        mock_pool, mock_conn = _make_mock_pool()
        entry = PlaylistPurchaseLogEntry(
            id='log-1', playlist_id='pl-1', playlist_name='Chill',
            playlist_link='https://open.spotify.com/playlist/abc',
            service_type=PlaylistServiceType.FOLLOWERS, order_set_id='pf-1',
            service_id=301, quantity=500, status=PurchaseStatus.SUCCESS, created_at=NOW,
        )

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            await PostgresCampaignStore('postgresql://test').add_playlist_purchase_log(entry)

        args = mock_conn.execute.call_args.args
        assert 'smm_playlist_purchase_logs' in args[0]
        assert args[5] == 'playlist_followers'
        assert args[12] == 'success'
        assert len(args) == 18

    @pytest.mark.asyncio
    async def test_list_filters_by_playlist(self):
        mock_pool, mock_conn = _make_mock_pool()
        mock_conn.fetch.return_value = []

        with patch('campaign_server.database.get_pool', new_callable=AsyncMock, return_value=mock_pool):
            await PostgresCampaignStore('postgresql://test').list_playlist_purchase_logs('pl-1')

        query, param = mock_conn.fetch.call_args.args
        assert 'WHERE playlist_id = $1' in query
        assert param == 'pl-1'


class TestCreateStore:

    def test_in_memory_without_url(self):
        store = create_store(ServerConfig())
        assert type(store) is CampaignStore

    def test_postgres_with_url(self):
        store = create_store(ServerConfig(database_url='postgresql://x/y'))
        assert isinstance(store, PostgresCampaignStore)
