"""
Configuration management for the campaign engine.
"""

import logging
import os
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from .state_machine import GRACE_HOURS

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_SMM_PANEL_API_URL = 'https://followiz.com/api/v2'


class ServerConfig(BaseModel):
    """Configuration for the campaign server."""

    host: str = '0.0.0.0'
    port: int = 8000
    database_url: str = ''
    log_level: str = 'INFO'
    auth_tokens: Optional[Dict[str, str]] = None
    # External SMM panel
    smm_panel_api_url: str = DEFAULT_SMM_PANEL_API_URL
    smm_panel_api_key: str = ''
    smm_panel_timeout_seconds: float = 30.0
    # Lifecycle windows (hours)
    deadline_hours: int = 48
    grace_hours: int = GRACE_HOURS
    hide_hours: int = 8


def load_config() -> ServerConfig:
    """Load configuration from environment variables."""
    return ServerConfig(
        host=os.getenv('HOST', '0.0.0.0'),
        port=int(os.getenv('PORT', '8000')),
        database_url=os.getenv('DATABASE_URL', ''),
        log_level=os.getenv('LOG_LEVEL', 'INFO'),
        auth_tokens=_parse_auth_tokens(os.getenv('ADMIN_AUTH_TOKENS')),
        smm_panel_api_url=os.getenv(
            'SMM_PANEL_API_URL', DEFAULT_SMM_PANEL_API_URL
        ),
        smm_panel_api_key=os.getenv('SMM_PANEL_API_KEY', ''),
        smm_panel_timeout_seconds=float(
            os.getenv('SMM_PANEL_TIMEOUT_SECONDS', '30')
        ),
        deadline_hours=int(os.getenv('CAMPAIGN_DEADLINE_HOURS', '48')),
        grace_hours=int(os.getenv('CAMPAIGN_GRACE_HOURS', str(GRACE_HOURS))),
        hide_hours=int(os.getenv('CAMPAIGN_HIDE_HOURS', '8')),
    )


def _parse_auth_tokens(tokens_str: Optional[str]) -> Optional[Dict[str, str]]:
    """Parse admin tokens of the form ``name:token,name:token``."""
    if not tokens_str:
        return None

    tokens = {}
    for token_pair in tokens_str.split(','):
        if ':' not in token_pair:
            if token_pair.strip():
                logger.warning('Ignoring malformed admin token entry')
            continue
        name, token = token_pair.split(':', 1)
        if name.strip() and token.strip():
            tokens[name.strip()] = token.strip()

    return tokens if tokens else None


_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Active configuration; loaded from the environment on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[ServerConfig]) -> None:
    global _config
    _config = config
