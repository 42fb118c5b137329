"""
Admin authentication gate.

Every marketing and SMM route depends on ``require_admin``: the caller must
send ``Authorization: Bearer <token>`` with a token listed in
``ADMIN_AUTH_TOKENS`` (``name:token,name:token``). The matching name is
returned and recorded as ``submitted_by`` on purchases.
"""

import logging
import secrets
from typing import Dict, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

_admin_tokens: Dict[str, str] = {}


def configure_admin_tokens(tokens: Optional[Dict[str, str]]) -> None:
    global _admin_tokens
    _admin_tokens = dict(tokens or {})
    if not _admin_tokens:
        logger.warning('No ADMIN_AUTH_TOKENS configured; admin routes will reject all callers')


def authenticate_token(token: Optional[str]) -> Optional[str]:
    """Return the admin name for ``token``, or None."""
    if not token:
        return None
    for name, expected in _admin_tokens.items():
        if secrets.compare_digest(token.encode(), expected.encode()):
            return name
    return None


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Require an authenticated admin; returns the admin's name."""
    name = authenticate_token(credentials.credentials if credentials else None)
    if name is None:
        raise HTTPException(status_code=401, detail='Authentication required')
    return name
