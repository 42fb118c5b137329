"""Streamline distribution helpers.

This package provides small CLI wrappers and distribution metadata.
The engine itself lives in the `campaign_server` package.
"""

__all__ = ["__version__"]

# Keep version in sync with setup.py for now.
__version__ = "1.0.0"
