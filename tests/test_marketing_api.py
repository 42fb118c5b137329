"""
Tests for the marketing REST API.

Runs the router on an in-memory store through httpx's ASGI transport.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from campaign_server import database as db
from campaign_server.auth import configure_admin_tokens
from campaign_server.config import ServerConfig, set_config
from campaign_server.errors import register_exception_handlers
from campaign_server.expiry_sweeper import init_sweeper
from campaign_server.marketing_api import router
from campaign_server.models import Order, OrderItem, OrderSet, Playlist
from campaign_server.store import CampaignStore

AUTH = {'Authorization': 'Bearer secret'}
LINK = 'https://open.spotify.com/track/4uLU6hMCjMI75M1A2tKUQC'


def _now():
    return datetime.now(timezone.utc)


@pytest_asyncio.fixture
async def store():
    store = CampaignStore()
    await store.add_order(Order(
        id='o-1',
        order_number='1001',
        customer_name='Dana Reyes',
        created_at=_now() - timedelta(hours=50),
        items=[OrderItem(package_name='MOMENTUM', song_name='Night Drive', song_link=LINK)],
    ))
    for i in range(1, 4):
        await store.add_playlist(Playlist(id=f'pl-{i}', name=f'Chill {i}'))
    return store


@pytest_asyncio.fixture
async def panel():
    client = MagicMock()
    client.api_key = 'key'
    client.add_order = AsyncMock(return_value={'order': 9001})
    client.service_prices = AsyncMock(return_value={7: 1.0})
    client.balance = AsyncMock(return_value={'balance': '10.00', 'currency': 'USD'})
    return client


@pytest_asyncio.fixture
async def client(monkeypatch, store, panel):
    set_config(ServerConfig())
    configure_admin_tokens({'alice': 'secret'})
    db.set_store(store)
    init_sweeper(store)
    monkeypatch.setattr('campaign_server.marketing_api.get_smm_client', lambda: panel)

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router)
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as c:
        yield c

    db.set_store(None)
    set_config(None)


async def _import(client) -> str:
    resp = await client.post('/v1/marketing/import', headers=AUTH)
    assert resp.status_code == 200
    campaigns = (await client.get('/v1/marketing/campaigns', headers=AUTH)).json()
    return campaigns[0]['id']


class TestAuth:

    @pytest.mark.asyncio
    async def test_requires_token(self, client):
        resp = await client.get('/v1/marketing/action-queue')
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_bad_token(self, client):
        resp = await client.get(
            '/v1/marketing/action-queue', headers={'Authorization': 'Bearer nope'}
        )
        assert resp.status_code == 401


class TestQueueAndListing:

    @pytest.mark.asyncio
    async def test_import_then_queue(self, client):
        resp = await client.post('/v1/marketing/import', headers=AUTH)
        assert resp.json()['campaigns_created'] == 1

        resp = await client.get('/v1/marketing/action-queue', headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()
        assert data['total'] == 1
        item = data['items'][0]
        assert item['status'] == 'Overdue'
        assert item['due_by'] == '2h ago!'
        assert item['actions']['direct_streams'] is True
        assert data['sweep']['campaigns_checked'] == 1

    @pytest.mark.asyncio
    async def test_campaign_detail_and_counters(self, client):
        campaign_id = await _import(client)

        resp = await client.get(f'/v1/marketing/campaigns/{campaign_id}', headers=AUTH)
        assert resp.json()['state'] == 'awaiting_initial_actions'
        assert resp.json()['status_label'] == 'Action Needed'

        counters = (await client.get('/v1/marketing/counters', headers=AUTH)).json()
        assert counters['active_campaigns'] == 1
        assert counters['total_playlists'] == 3

    @pytest.mark.asyncio
    async def test_unknown_campaign_problem_details(self, client):
        resp = await client.get('/v1/marketing/campaigns/missing', headers=AUTH)
        assert resp.status_code == 404
        assert resp.headers['content-type'].startswith('application/problem+json')
        assert resp.json()['code'] == 'not_found'

    @pytest.mark.asyncio
    async def test_deadline(self, client):
        resp = await client.get('/v1/marketing/orders/o-1/deadline', headers=AUTH)
        data = resp.json()
        assert data['visible'] is True
        assert data['color_band'] == 'breached'
        assert data['label'] == '2 Hours past deadline!'

        resp = await client.get('/v1/marketing/orders/o-9/deadline', headers=AUTH)
        assert resp.status_code == 404


class TestCampaignMutations:

    @pytest.mark.asyncio
    async def test_slots_then_confirm_playlists(self, client):
        campaign_id = await _import(client)
        base = f'/v1/marketing/campaigns/{campaign_id}'

        resp = await client.put(f'{base}/slots/0', json={'value': 'pl-1'}, headers=AUTH)
        assert resp.status_code == 200
        assert len(resp.json()['playlist_assignments']) == 2

        resp = await client.post(f'{base}/confirm-playlists-added', headers=AUTH)
        assert resp.status_code == 400
        assert resp.json()['data']['empty_slots'] == [1]

        await client.put(f'{base}/slots/1', json={'value': 'pl-2'}, headers=AUTH)
        resp = await client.post(f'{base}/confirm-playlists-added', headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()['playlists_added_confirmed'] is True

    @pytest.mark.asyncio
    async def test_slot_out_of_range(self, client):
        campaign_id = await _import(client)
        resp = await client.put(
            f'/v1/marketing/campaigns/{campaign_id}/slots/5',
            json={'value': 'pl-1'},
            headers=AUTH,
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_confirm_direct_streams_submits(self, client, store, panel):
        await store.add_order_set(OrderSet(id='s-1', package_name='MOMENTUM', service_id=7, quantity=3000))
        campaign_id = await _import(client)

        resp = await client.post(
            f'/v1/marketing/campaigns/{campaign_id}/confirm-direct-streams', headers=AUTH
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data['confirmed'] is True
        assert data['results'][0]['followiz_order_id'] == '9001'
        panel.add_order.assert_awaited_once_with(7, LINK, 3000, runs=None, interval=None)

        logs = await store.list_purchase_logs(campaign_id)
        assert logs[0].submitted_by == 'alice'

    @pytest.mark.asyncio
    async def test_confirm_direct_streams_while_in_flight(self, client, store, panel):
        await store.add_order_set(OrderSet(id='s-1', package_name='MOMENTUM', service_id=7, quantity=3000))
        campaign_id = await _import(client)
        campaign = await store.get_campaign(campaign_id)
        campaign.submission_claimed_at = _now()
        await store.update_campaign(campaign, campaign.version)

        resp = await client.post(
            f'/v1/marketing/campaigns/{campaign_id}/confirm-direct-streams', headers=AUTH
        )

        assert resp.status_code == 409
        assert resp.json()['code'] == 'conflict'
        panel.add_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirm_direct_streams_without_order_sets(self, client):
        campaign_id = await _import(client)
        resp = await client.post(
            f'/v1/marketing/campaigns/{campaign_id}/confirm-direct-streams', headers=AUTH
        )
        assert resp.status_code == 500
        assert resp.json()['code'] == 'configuration_error'

    @pytest.mark.asyncio
    async def test_removal_requires_playlists(self, client):
        campaign_id = await _import(client)
        resp = await client.post(
            f'/v1/marketing/campaigns/{campaign_id}/confirm-removal', headers=AUTH
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_hide_and_unhide(self, client):
        campaign_id = await _import(client)
        base = f'/v1/marketing/campaigns/{campaign_id}'

        resp = await client.post(f'{base}/hide', json={'hours': 2}, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()['is_hidden'] is True

        queue = (await client.get('/v1/marketing/action-queue', headers=AUTH)).json()
        assert queue['total'] == 0
        queue = (await client.get(
            '/v1/marketing/action-queue', params={'include_hidden': 'true'}, headers=AUTH
        )).json()
        assert queue['total'] == 1

        resp = await client.post(f'{base}/unhide', headers=AUTH)
        assert resp.json()['hidden_until'] is None

    @pytest.mark.asyncio
    async def test_hide_in_past_rejected(self, client):
        campaign_id = await _import(client)
        past = (_now() - timedelta(hours=1)).isoformat()
        resp = await client.post(
            f'/v1/marketing/campaigns/{campaign_id}/hide', json={'until': past}, headers=AUTH
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_sweep_endpoint(self, client):
        await _import(client)
        resp = await client.post('/v1/marketing/sweep', headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()['errors'] == []


class TestGeneratedAssignments:

    @pytest.mark.asyncio
    async def test_generate_for_campaign(self, client, store):
        await store.add_playlist(Playlist(id='pop-1', name='Pop Rising', genre='Pop'))
        await store.add_playlist(Playlist(id='gen-1', name='Daily Mix', genre='General'))
        campaign_id = await _import(client)

        resp = await client.post(
            f'/v1/marketing/campaigns/{campaign_id}/generate-assignments',
            json={'genre': 'pop'},
            headers=AUTH,
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data['assigned'] == ['pop-1', 'gen-1']
        assert data['shortfall'] == 0
        assert data['campaign']['playlist_assignments'][0]['id'] == 'pop-1'

    @pytest.mark.asyncio
    async def test_generate_after_confirmation_rejected(self, client):
        campaign_id = await _import(client)
        base = f'/v1/marketing/campaigns/{campaign_id}'
        await client.put(f'{base}/slots/0', json={'value': 'pl-1'}, headers=AUTH)
        await client.put(f'{base}/slots/1', json={'value': 'pl-2'}, headers=AUTH)
        await client.post(f'{base}/confirm-playlists-added', headers=AUTH)

        resp = await client.post(f'{base}/generate-assignments', headers=AUTH)

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_generate_all(self, client, store):
        await store.add_playlist(Playlist(id='gen-1', name='Daily Mix', genre='General'))
        await _import(client)

        resp = await client.post('/v1/marketing/generate-assignments', headers=AUTH)

        assert resp.status_code == 200
        assert resp.json()['slots_filled'] == 1
        assert resp.json()['campaigns_updated'] == 1
