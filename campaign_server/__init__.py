"""
Streamline campaign engine.

Tracks music-promotion campaigns through their fulfillment lifecycle:
playlist slot assignment, progress estimation, the admin action queue,
expiry sweeps, and SMM panel order submission.
"""

__version__ = '1.0.0'
