"""
Error taxonomy for the campaign engine.

Every engine failure is a ``CampaignEngineError`` subclass carrying the HTTP
status it maps to when raised through the REST API:

- ConfigurationError (500): missing package config, missing API key,
  no order sets for a package. Fatal, never retried.
- ExternalServiceError (502): SMM panel HTTP failure or panel-reported
  error string. Recorded per attempt.
- ValidationError (400): bad slot index, inactive playlist, malformed
  request. Raised before any state mutation.
- NotFoundError (404): unknown campaign, order, playlist or order set.
- ConflictError (409): a compare-and-swap write lost to a concurrent one.

Errors render as RFC 9457 Problem Details (``application/problem+json``).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# =============================================================================
# Base Error Class
# =============================================================================


class CampaignEngineError(Exception):
    """
    Base exception class for all campaign engine errors.

    Subclasses should define:
    - code: machine-readable error code
    - http_status: HTTP status code for REST binding
    - message: Default error message
    """

    code: str = 'engine_error'
    http_status: int = 500
    message: str = 'Campaign engine error'

    def __init__(
        self,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        self._message = message or self.__class__.message
        self.data = data
        super().__init__(self._message)

    @property
    def error_message(self) -> str:
        """Get the error message."""
        return self._message

    def to_problem_details(
        self,
        request: Optional[Request] = None,
        instance: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Convert to RFC 9457 Problem Details format.

        Args:
            request: FastAPI request object (for instance URL)
            instance: Override for the instance URI

        Returns:
            RFC 9457 Problem Details dict
        """
        problem: Dict[str, Any] = {
            'type': f'urn:streamline:error:{self.code}',
            'title': self.__class__.__name__.replace('Error', ' Error'),
            'status': self.http_status,
            'detail': self._message,
            'code': self.code,
        }

        if instance:
            problem['instance'] = instance
        elif request:
            problem['instance'] = str(request.url)

        if self.data:
            problem['data'] = self.data

        problem['timestamp'] = datetime.now(timezone.utc).isoformat()
        return problem

    def to_http_response(self, request: Optional[Request] = None) -> JSONResponse:
        return JSONResponse(
            status_code=self.http_status,
            content=self.to_problem_details(request),
            media_type='application/problem+json',
        )


# =============================================================================
# Concrete Errors
# =============================================================================


class ConfigurationError(CampaignEngineError):
    """Missing or unusable configuration. Blocks the triggering action."""

    code = 'configuration_error'
    http_status = 500
    message = 'Configuration error'


class ExternalServiceError(CampaignEngineError):
    """The SMM panel failed or reported an error."""

    code = 'external_service_error'
    http_status = 502
    message = 'External service error'

    def __init__(
        self,
        message: Optional[str] = None,
        raw_response: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, data)
        self.raw_response = raw_response


class ValidationError(CampaignEngineError):
    """Request rejected before any state was mutated."""

    code = 'validation_error'
    http_status = 400
    message = 'Invalid request'


class NotFoundError(CampaignEngineError):
    code = 'not_found'
    http_status = 404
    message = 'Not found'


class ConflictError(CampaignEngineError):
    """Optimistic concurrency check failed; the row changed underneath us."""

    code = 'conflict'
    http_status = 409
    message = 'Concurrent modification'


# =============================================================================
# FastAPI Integration
# =============================================================================


async def handle_engine_error(
    request: Request, exc: CampaignEngineError
) -> Response:
    if exc.http_status >= 500:
        logger.error(f'{exc.__class__.__name__}: {exc.error_message}')
    return exc.to_http_response(request)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register engine error handlers with a FastAPI app.

    Usage:
        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(CampaignEngineError, handle_engine_error)
