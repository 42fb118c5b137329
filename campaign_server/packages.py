"""
Package configuration resolution.

Configured packages (admin editable) win; otherwise a static table keyed by
normalized package name is used. Legacy package names map onto current ones.
"""

import logging
from typing import Dict, Mapping, Optional

from .errors import ConfigurationError
from .models import PackageConfig

logger = logging.getLogger(__name__)

PACKAGE_ALIASES = {
    'ULTRA': 'LEGENDARY',
    'DIAMOND': 'UNSTOPPABLE',
    'STARTER': 'BREAKTHROUGH',
    'TEST CAMPAIGN': 'BREAKTHROUGH',
}


def _fallback(
    name: str, slots: int, direct: int, playlist: int, days: int
) -> PackageConfig:
    return PackageConfig(
        package_name=name,
        playlist_assignments_needed=slots,
        direct_streams_target=direct,
        playlist_streams_target=playlist,
        time_on_playlists=days,
    )


FALLBACK_PACKAGES: Dict[str, PackageConfig] = {
    'LEGENDARY': _fallback('LEGENDARY', 4, 70000, 40000, 14),
    'UNSTOPPABLE': _fallback('UNSTOPPABLE', 4, 21000, 20000, 10),
    'DOMINATE': _fallback('DOMINATE', 3, 10000, 9000, 6),
    'MOMENTUM': _fallback('MOMENTUM', 2, 3000, 4000, 4),
    'BREAKTHROUGH': _fallback('BREAKTHROUGH', 2, 1500, 2000, 2),
    'TEST CAMPAIGN': _fallback('TEST CAMPAIGN', 2, 0, 9000, 9),
}


def clean_package_name(name: Optional[str]) -> str:
    """Upper-case package name with whitespace collapsed."""
    return ' '.join((name or '').upper().split())


def normalize_package_name(name: Optional[str]) -> str:
    """Clean package name with legacy aliases applied."""
    key = clean_package_name(name)
    return PACKAGE_ALIASES.get(key, key)


def resolve_package_config(
    package_name: Optional[str],
    configured: Optional[Mapping[str, PackageConfig]] = None,
) -> PackageConfig:
    """
    Resolve the configuration for a package.

    Lookup order: configured entry by exact name, configured entry by
    normalized name, fallback by exact name, fallback by normalized name.

    Raises:
        ConfigurationError: Neither source knows the package.
    """
    raw = clean_package_name(package_name)
    normalized = normalize_package_name(raw)
    configured = {
        clean_package_name(k): v for k, v in (configured or {}).items()
    }

    for source in (configured, FALLBACK_PACKAGES):
        for key in (raw, normalized):
            if key and key in source:
                return source[key]

    logger.warning(f'No package configuration for {package_name!r}')
    raise ConfigurationError(
        f'No package configuration for {package_name!r}',
        data={'package_name': package_name},
    )
