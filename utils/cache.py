"""Local disk cache used as the fallback prospect record store."""

from datetime import datetime, timedelta
from typing import Any, Optional, Dict, Iterator, Tuple
from pathlib import Path
import diskcache as dc
import structlog

from .config import CacheConfig


class CacheManager:
    """
    Disk-based cache manager with TTL support.

    Every value is stored inside an envelope carrying its creation and
    expiry time. Keys are namespaced as ``namespace:key``.
    """

    def __init__(self, config: CacheConfig):
        self.config = config
        self.logger = structlog.get_logger(__name__).bind(component="cache")

        Path(config.directory).mkdir(parents=True, exist_ok=True)

        self._cache = dc.Cache(
            directory=config.directory,
            size_limit=self._parse_size(config.max_size)
        )

        self.logger.info(
            "Cache manager initialized",
            directory=config.directory,
            ttl=config.ttl,
            max_size=config.max_size
        )

    def _parse_size(self, size_str: str) -> int:
        """Parse size string (e.g., '1GB', '500MB') to bytes."""
        size_str = size_str.upper()

        if size_str.endswith('GB'):
            return int(float(size_str[:-2]) * 1024 * 1024 * 1024)
        elif size_str.endswith('MB'):
            return int(float(size_str[:-2]) * 1024 * 1024)
        elif size_str.endswith('KB'):
            return int(float(size_str[:-2]) * 1024)
        else:
            return int(size_str)

    def _generate_key(self, key: str, namespace: str = "default") -> str:
        """Generate a cache key with namespace."""
        return f"{namespace}:{key}"

    def _is_expired(self, cached_item: Dict[str, Any]) -> bool:
        if 'expires_at' not in cached_item:
            return False
        return datetime.now() > datetime.fromisoformat(cached_item['expires_at'])

    def get(self, key: str, namespace: str = "default") -> Optional[Any]:
        """Get value from cache."""
        cache_key = self._generate_key(key, namespace)

        try:
            cached_item = self._cache.get(cache_key)

            if cached_item is None:
                return None

            if not isinstance(cached_item, dict):
                self.logger.warning("Cache item is not a dictionary", key=cache_key, type=type(cached_item).__name__)
                return None

            if self._is_expired(cached_item):
                self._cache.delete(cache_key)
                self.logger.debug("Cache item expired", key=cache_key)
                return None

            self.logger.debug("Cache hit", key=cache_key)
            return cached_item.get('data')

        except Exception as e:
            self.logger.error("Error getting from cache", key=cache_key, error=str(e))
            return None

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        namespace: str = "default"
    ) -> bool:
        """Set value in cache with TTL (seconds)."""
        cache_key = self._generate_key(key, namespace)
        ttl = ttl or self.config.ttl

        try:
            now = datetime.now()
            cached_item = {
                'data': value,
                'created_at': now.isoformat(),
                'expires_at': (now + timedelta(seconds=ttl)).isoformat()
            }

            self._cache.set(cache_key, cached_item)
            self.logger.debug("Cache set", key=cache_key, ttl=ttl)
            return True

        except Exception as e:
            self.logger.error("Error setting cache", key=cache_key, error=str(e))
            return False

    def delete(self, key: str, namespace: str = "default") -> bool:
        """Delete value from cache."""
        cache_key = self._generate_key(key, namespace)

        try:
            result = self._cache.delete(cache_key)
            self.logger.debug("Cache delete", key=cache_key, found=result)
            return result

        except Exception as e:
            self.logger.error("Error deleting from cache", key=cache_key, error=str(e))
            return False

    def items(self, namespace: str = "default") -> Iterator[Tuple[str, Any]]:
        """Iterate over (key, value) pairs of a namespace, skipping expired items."""
        prefix = f"{namespace}:"
        for cache_key in list(self._cache):
            if not cache_key.startswith(prefix):
                continue
            cached_item = self._cache.get(cache_key)
            if not isinstance(cached_item, dict) or self._is_expired(cached_item):
                continue
            yield cache_key[len(prefix):], cached_item.get('data')

    def count(self, namespace: str = "default") -> int:
        """Count keys stored under a namespace."""
        prefix = f"{namespace}:"
        return sum(1 for cache_key in list(self._cache) if cache_key.startswith(prefix))

    def purge_expired(self, namespace: str = "default") -> int:
        """Delete expired items from a namespace."""
        count = 0
        prefix = f"{namespace}:"

        try:
            for cache_key in list(self._cache):
                if not cache_key.startswith(prefix):
                    continue
                cached_item = self._cache.get(cache_key)
                if isinstance(cached_item, dict) and self._is_expired(cached_item):
                    self._cache.delete(cache_key)
                    count += 1

            self.logger.info("Purged expired cache items", namespace=namespace, count=count)
            return count

        except Exception as e:
            self.logger.error("Error purging namespace", namespace=namespace, error=str(e))
            return count

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        try:
            return {
                'size': len(self._cache),
                'volume': self._cache.volume(),
                'directory': str(self._cache.directory),
            }
        except Exception as e:
            self.logger.error("Error getting cache stats", error=str(e))
            return {}

    def close(self) -> None:
        self._cache.close()

