"""
Storage layer for usage-index.

Binary cache codec and the cache file repository.
"""

from .codec import CacheFormatError
from .repository import CacheRepository

__all__ = ["CacheFormatError", "CacheRepository"]
