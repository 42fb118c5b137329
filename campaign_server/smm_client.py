"""
SMM panel client - shared httpx client with a bounded timeout and a circuit
breaker in front of the external social-media-marketing panel.

The panel speaks one endpoint: form-encoded POSTs carrying ``key`` and
``action``. Supported actions:

- balance:  account balance and currency
- services: service catalog, each entry carrying ``rate`` (price per 1000)
- add:      submit an order (service, link, quantity, optional drip feed)
- status:   poll one order; ``orders`` polls up to 100 at once

Circuit Breaker States:
- CLOSED: Normal operation, requests flow through
- OPEN: Too many failures, requests fail immediately (fast fail)
- HALF_OPEN: After cooldown, allow one probe request through

Read-only actions are retried with exponential backoff. ``add`` is never
retried: a timeout after the panel accepted the order would otherwise create
a duplicate purchase.

Usage:
    client = SMMPanelClient(api_url, api_key)
    await client.start()
    balance = await client.balance()
    order = await client.add_order(service_id, link, quantity, runs=5, interval=60)

Configuration (environment variables):
    SMM_PANEL_API_URL, SMM_PANEL_API_KEY, SMM_PANEL_TIMEOUT_SECONDS
    CB_FAILURE_THRESHOLD, CB_RECOVERY_TIMEOUT_SECONDS
    HTTP_RETRY_MAX_ATTEMPTS, HTTP_RETRY_BASE_DELAY_SECONDS
"""

import asyncio
import json
import logging
import os
import random
import time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .errors import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# Configuration
# -------------------------------------------------------------------

MAX_CONNECTIONS = int(os.environ.get('HTTP_MAX_CONNECTIONS', '20'))
MAX_KEEPALIVE = int(os.environ.get('HTTP_MAX_KEEPALIVE', '10'))

CB_FAILURE_THRESHOLD = int(os.environ.get('CB_FAILURE_THRESHOLD', '5'))
CB_RECOVERY_TIMEOUT = int(os.environ.get('CB_RECOVERY_TIMEOUT_SECONDS', '60'))
CB_HALF_OPEN_MAX = int(os.environ.get('CB_HALF_OPEN_MAX_REQUESTS', '1'))

RETRY_MAX_ATTEMPTS = int(os.environ.get('HTTP_RETRY_MAX_ATTEMPTS', '2'))
RETRY_BASE_DELAY = float(os.environ.get('HTTP_RETRY_BASE_DELAY_SECONDS', '1.0'))
RETRY_MAX_DELAY = float(os.environ.get('HTTP_RETRY_MAX_DELAY_SECONDS', '30.0'))
RETRY_BACKOFF_FACTOR = float(os.environ.get('HTTP_RETRY_BACKOFF_FACTOR', '2.0'))

MAX_STATUS_BATCH = 100


# -------------------------------------------------------------------
# Circuit Breaker
# -------------------------------------------------------------------

class CircuitState(Enum):
    CLOSED = 'closed'
    OPEN = 'open'
    HALF_OPEN = 'half_open'


class CircuitBreaker:
    """
    Circuit breaker for external HTTP calls.

    Fails fast while the panel is unhealthy, then probes for recovery.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = CB_FAILURE_THRESHOLD,
        recovery_timeout: float = CB_RECOVERY_TIMEOUT,
        half_open_max: int = CB_HALF_OPEN_MAX,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max = half_open_max

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float = 0
        self._half_open_calls = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                return CircuitState.HALF_OPEN
        return self._state

    async def allow_request(self) -> bool:
        async with self._lock:
            current = self.state
            if current == CircuitState.CLOSED:
                return True
            if current == CircuitState.HALF_OPEN:
                if self._half_open_calls < self.half_open_max:
                    self._half_open_calls += 1
                    return True
            return False

    async def record_success(self) -> None:
        async with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                logger.info('Circuit breaker [%s]: CLOSED (recovered)', self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0
            self._success_count += 1

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.monotonic()

            if self._state == CircuitState.OPEN:
                # Half-open probe failed
                self._half_open_calls = 0
                logger.warning(
                    'Circuit breaker [%s]: OPEN (probe failed, retry in %ds)',
                    self.name, self.recovery_timeout,
                )
            elif self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(
                    'Circuit breaker [%s]: OPEN (%d consecutive failures, '
                    'retry in %ds)',
                    self.name, self._failure_count, self.recovery_timeout,
                )

    def get_health(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'state': self.state.value,
            'failure_count': self._failure_count,
            'success_count': self._success_count,
            'failure_threshold': self.failure_threshold,
            'recovery_timeout_seconds': self.recovery_timeout,
        }


# -------------------------------------------------------------------
# Panel client
# -------------------------------------------------------------------

class SMMPanelClient:
    """Client for the SMM panel's form-encoded action API."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retries: int = RETRY_MAX_ATTEMPTS,
        circuit: Optional[CircuitBreaker] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key or ''
        self.timeout = timeout
        self.retries = retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._circuit = circuit or CircuitBreaker('smm_panel')

    async def start(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            transport=self._transport,
            limits=httpx.Limits(
                max_connections=MAX_CONNECTIONS,
                max_keepalive_connections=MAX_KEEPALIVE,
            ),
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
        )
        logger.info('SMM panel client started (url=%s)', self.api_url)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info('SMM panel client stopped')

    @property
    def circuit(self) -> CircuitBreaker:
        return self._circuit

    def get_health(self) -> Dict[str, Any]:
        return {
            'started': self._client is not None,
            'api_url': self.api_url,
            'api_key_configured': bool(self.api_key),
            'circuit_breaker': self._circuit.get_health(),
        }

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _call(
        self, action: str, params: Optional[Dict[str, Any]] = None, retries: Optional[int] = None
    ) -> Any:
        """
        POST one action and return the decoded JSON body.

        Raises:
            ConfigurationError: No API key configured.
            ExternalServiceError: Circuit open, transport failure, non-2xx,
                undecodable body, or a panel-reported ``error``.
        """
        if not self.api_key:
            raise ConfigurationError('SMM panel API key is not configured')
        if self._client is None:
            await self.start()

        if not await self._circuit.allow_request():
            raise ExternalServiceError(
                f'SMM panel circuit breaker is open '
                f'(state={self._circuit.state.value})'
            )

        form = {'key': self.api_key, 'action': action}
        for name, value in (params or {}).items():
            if value is not None:
                form[name] = str(value)

        retries = self.retries if retries is None else retries
        attempt = 0
        while True:
            try:
                resp = await self._client.post(self.api_url, data=form)
            except httpx.RequestError as e:
                await self._circuit.record_failure()
                if attempt < retries:
                    attempt += 1
                    logger.warning(
                        'SMM panel %s: %s (attempt %d/%d, retrying)',
                        action, type(e).__name__, attempt, retries + 1,
                    )
                    await self._backoff_sleep(attempt)
                    continue
                logger.error('SMM panel %s failed: %s', action, e)
                raise ExternalServiceError(
                    f'SMM panel request failed: {type(e).__name__}: {e}'
                ) from e

            if resp.status_code >= 500 and attempt < retries:
                await self._circuit.record_failure()
                attempt += 1
                logger.warning(
                    'SMM panel %s: HTTP %d (attempt %d/%d, retrying)',
                    action, resp.status_code, attempt, retries + 1,
                )
                await self._backoff_sleep(attempt)
                continue
            break

        raw = resp.text
        if resp.status_code >= 500:
            await self._circuit.record_failure()
        else:
            await self._circuit.record_success()

        if resp.status_code >= 400:
            raise ExternalServiceError(
                f'SMM panel returned HTTP {resp.status_code}', raw_response=raw
            )

        try:
            body = resp.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise ExternalServiceError(
                'SMM panel returned a non-JSON response', raw_response=raw
            ) from e

        if isinstance(body, dict) and body.get('error'):
            raise ExternalServiceError(str(body['error']), raw_response=raw)
        return body

    async def _backoff_sleep(self, attempt: int) -> None:
        """Exponential backoff with jitter."""
        delay = min(
            RETRY_BASE_DELAY * (RETRY_BACKOFF_FACTOR ** (attempt - 1)),
            RETRY_MAX_DELAY,
        )
        jitter = delay * 0.2 * random.random()
        await asyncio.sleep(delay + jitter)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def balance(self) -> Dict[str, Any]:
        return await self._call('balance')

    async def services(self) -> List[Dict[str, Any]]:
        body = await self._call('services')
        if not isinstance(body, list):
            raise ExternalServiceError(
                'Unexpected service catalog payload', raw_response=json.dumps(body)
            )
        return body

    async def service_prices(self, service_ids: Iterable[int]) -> Dict[int, float]:
        """Live price per 1000 for the requested services (missing ids omitted)."""
        wanted = {int(s) for s in service_ids}
        prices: Dict[int, float] = {}
        for service in await self.services():
            try:
                service_id = int(service.get('service'))
                rate = float(service.get('rate'))
            except (TypeError, ValueError):
                continue
            if service_id in wanted:
                prices[service_id] = rate
        return prices

    async def add_order(
        self,
        service_id: int,
        link: str,
        quantity: int,
        runs: Optional[int] = None,
        interval: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Submit an order. Drip-feed ``runs``/``interval`` are sent only when
        positive. Never retried.

        Returns:
            Panel body, e.g. ``{'order': 23501}``
        """
        params: Dict[str, Any] = {
            'service': service_id,
            'link': link,
            'quantity': quantity,
        }
        if runs and runs > 0:
            params['runs'] = runs
        if interval and interval > 0:
            params['interval'] = interval

        body = await self._call('add', params, retries=0)
        if not isinstance(body, dict) or body.get('order') is None:
            raise ExternalServiceError(
                'SMM panel did not return an order id',
                raw_response=json.dumps(body),
            )
        return body

    async def order_status(self, order_id: str) -> Dict[str, Any]:
        return await self._call('status', {'order': order_id})

    async def order_statuses(self, order_ids: List[str]) -> Dict[str, Any]:
        if not order_ids:
            return {}
        if len(order_ids) > MAX_STATUS_BATCH:
            raise ValueError(
                f'At most {MAX_STATUS_BATCH} orders can be polled at once'
            )
        return await self._call(
            'status', {'orders': ','.join(str(o) for o in order_ids)}
        )


def dump_raw(body: Any) -> str:
    """Serialize a panel body for the purchase log."""
    try:
        return json.dumps(body)
    except (TypeError, ValueError):
        return str(body)


# -------------------------------------------------------------------
# Global Instance
# -------------------------------------------------------------------

_client: Optional[SMMPanelClient] = None


def get_smm_client() -> Optional[SMMPanelClient]:
    return _client


async def start_smm_client(
    api_url: str, api_key: Optional[str], timeout: float = 30.0
) -> SMMPanelClient:
    global _client
    if _client is not None:
        return _client
    _client = SMMPanelClient(api_url, api_key, timeout=timeout)
    await _client.start()
    return _client


async def stop_smm_client() -> None:
    global _client
    if _client is not None:
        await _client.stop()
        _client = None
