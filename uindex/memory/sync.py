import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from ..core.config import CacheConfig, UIElement
from .cache import CacheBackend, CacheError

logger = logging.getLogger(__name__)


class CacheSync:
    """
    Mirrors the latest snapshot of each (app, window) into a TTL cache.

    Key layout, under the configured prefix:
      app:<app>:<window>    JSON list of elements (snapshot)
      activeApps            JSON list of {app_name, window_title}, most recent first
      search:role:<role>    JSON list of elements with that role across active apps
      search:term:<term>    JSON list of elements matching a search term
      syncLock              advisory write lock

    Reads never raise: a failing backend looks like an empty cache.
    """

    def __init__(self, backend: Optional[CacheBackend], config: Optional[CacheConfig] = None):
        self.backend = backend
        self.config = config or CacheConfig()
        self.prefix = self.config.key_prefix
        self.active_apps_key = f"{self.prefix}activeApps"
        self.lock_key = f"{self.prefix}syncLock"
        self.available = False

    def initialize(self) -> bool:
        if self.backend is None:
            logger.info("Cache disabled; reads will use the durable store")
            return False
        try:
            self.available = bool(self.backend.ping())
        except CacheError as e:
            logger.warning("Cache unavailable, continuing without it: %s", e)
            self.available = False
        return self.available

    def app_key(self, app_name: str, window_title: str = "") -> str:
        return f"{self.prefix}app:{app_name}:{window_title}"

    def search_key(self, kind: str, term: str) -> str:
        return f"{self.prefix}search:{kind}:{term}"

    @staticmethod
    def _dump(elements: List[UIElement]) -> str:
        return json.dumps([e.to_dict() for e in elements])

    @staticmethod
    def _load(payload: str) -> List[UIElement]:
        return [UIElement.from_dict(d) for d in json.loads(payload)]

    def sync_elements(self, elements: List[UIElement]) -> bool:
        """Publish one snapshot. Returns False when skipped or failed."""
        if self.backend is None or not elements:
            return False

        token = uuid.uuid4().hex
        try:
            acquired = self.backend.set_nx(self.lock_key, token, self.config.lock_ttl_seconds)
        except CacheError as e:
            logger.warning("Cache sync skipped, lock unavailable: %s", e)
            return False
        if not acquired:
            logger.debug("Cache sync already in progress; skipping this snapshot")
            return False

        app_name, window_title = elements[0].identity
        try:
            self.backend.setex(self.app_key(app_name, window_title),
                               self.config.snapshot_ttl_seconds, self._dump(elements))
            self._update_active_apps(app_name, window_title)
            self._rebuild_role_indexes({e.role.lower() for e in elements})
            logger.debug("Synced %d elements for %s / %s", len(elements), app_name, window_title)
            return True
        except (CacheError, ValueError) as e:
            logger.warning("Cache sync failed for %s: %s", app_name, e)
            return False
        finally:
            self._release_lock(token)

    def _release_lock(self, token: str) -> None:
        try:
            self.backend.delete_if_equals(self.lock_key, token)
        except CacheError as e:
            logger.warning("Could not release cache sync lock: %s", e)

    def _update_active_apps(self, app_name: str, window_title: str) -> None:
        apps = [a for a in self.get_active_apps()
                if (a['app_name'], a['window_title']) != (app_name, window_title)]
        apps.insert(0, {'app_name': app_name, 'window_title': window_title})
        apps = apps[:self.config.max_active_apps]
        # Outlives any single snapshot so the list survives individual expiries.
        ttl = self.config.snapshot_ttl_seconds * 2
        self.backend.setex(self.active_apps_key, ttl, json.dumps(apps))

    def _snapshots(self) -> List[UIElement]:
        elements: List[UIElement] = []
        for app in self.get_active_apps():
            cached = self.get_elements(app['app_name'], app['window_title'])
            if cached:
                elements.extend(cached)
        return elements

    def _rebuild_role_indexes(self, roles) -> None:
        for key in self.backend.keys(f"{self.prefix}search:*"):
            self.backend.delete(key)

        everything = self._snapshots()
        for role in roles:
            matching = [e for e in everything if e.role.lower() == role]
            if matching:
                self.backend.setex(self.search_key("role", role),
                                   self.config.role_index_ttl_seconds, self._dump(matching))

    def get_elements(self, app_name: str, window_title: str = "") -> Optional[List[UIElement]]:
        if self.backend is None:
            return None
        try:
            payload = self.backend.get(self.app_key(app_name, window_title))
            return self._load(payload) if payload else None
        except (CacheError, ValueError, KeyError, TypeError) as e:
            logger.debug("Cache read failed for %s: %s", app_name, e)
            return None

    def get_elements_by_role(self, role: str, app_name: Optional[str] = None) -> List[UIElement]:
        if self.backend is None:
            return []
        role = role.lower()
        key = self.search_key("role", role)
        try:
            payload = self.backend.get(key)
            if payload:
                results = self._load(payload)
            else:
                results = [e for e in self._snapshots() if e.role.lower() == role]
                if results:
                    self.backend.setex(key, self.config.role_index_ttl_seconds, self._dump(results))
        except (CacheError, ValueError, KeyError, TypeError) as e:
            logger.debug("Cache role lookup failed for %r: %s", role, e)
            return []

        results = [e for e in results if e.is_actionable]
        if app_name is not None:
            results = [e for e in results if e.app_name == app_name]
        return sorted(results, key=lambda e: -e.confidence)

    def search_elements(self, term: str, app_name: Optional[str] = None,
                        limit: Optional[int] = None) -> List[UIElement]:
        """Actionable elements matching `term`, best first, at most `limit`."""
        if self.backend is None:
            return []
        needle = term.lower()
        key = self.search_key("term", needle)
        try:
            payload = self.backend.get(key)
            if payload:
                results = self._load(payload)
            else:
                results = [
                    e for e in self._snapshots()
                    if e.is_actionable and (
                        needle in e.label.lower()
                        or needle in (e.value or "").lower()
                        or needle in e.role.lower()
                    )
                ]
                if results:
                    self.backend.setex(key, self.config.search_ttl_seconds, self._dump(results))
        except (CacheError, ValueError, KeyError, TypeError) as e:
            logger.debug("Cache search failed for %r: %s", term, e)
            return []

        if app_name is not None:
            results = [e for e in results if e.app_name == app_name]
        results = sorted(results, key=lambda e: -e.confidence)
        return results[:limit] if limit is not None else results

    def get_active_apps(self) -> List[Dict[str, str]]:
        if self.backend is None:
            return []
        try:
            payload = self.backend.get(self.active_apps_key)
            return json.loads(payload) if payload else []
        except (CacheError, ValueError) as e:
            logger.debug("Cache active-app read failed: %s", e)
            return []

    def clear_app_cache(self, app_name: str, window_title: str = "") -> None:
        if self.backend is None:
            return
        try:
            self.backend.delete(self.app_key(app_name, window_title))
            search_keys = self.backend.keys(f"{self.prefix}search:*")
            if search_keys:
                self.backend.delete(*search_keys)
        except CacheError as e:
            logger.warning("Failed to clear cache for %s: %s", app_name, e)

    def clear_all(self) -> int:
        if self.backend is None:
            return 0
        try:
            keys = self.backend.keys(f"{self.prefix}*")
            if keys:
                self.backend.delete(*keys)
                logger.info("Cleared %d UI index cache entries", len(keys))
            return len(keys)
        except CacheError as e:
            logger.warning("Failed to clear the cache: %s", e)
            return 0

    def health_check(self) -> Dict[str, Any]:
        if self.backend is None:
            return {'status': 'disabled'}
        start = time.monotonic()
        try:
            self.backend.ping()
        except CacheError as e:
            return {'status': 'unhealthy', 'error': str(e)}
        return {'status': 'healthy', 'latency_ms': round((time.monotonic() - start) * 1000, 2)}
