"""Rate configuration store - the single authoritative source of rate rules"""

import json
import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ...cache import cache
from ...config import RATE_CONFIG_CACHE_TTL, RATE_CONFIG_PATH
from ..errors import InvalidConfiguration
from .default_rates import DEFAULT_RATE_CONFIGURATION
from .rate_table import RateConfiguration

logger = logging.getLogger(__name__)


class RateConfigRepository:
    """
    Read-only access to the versioned rate configuration.

    Snapshots are loaded from a JSON file (or the built-in rates), validated once,
    and cached in-process and in Redis. A snapshot is never mutated; a
    configuration change produces a new version.
    """

    def __init__(self, path: Optional[str] = RATE_CONFIG_PATH, ttl: int = RATE_CONFIG_CACHE_TTL):
        self.path = Path(path) if path else None
        self.ttl = ttl
        self._snapshot: Optional[RateConfiguration] = None
        self._loaded_at = 0.0

    @property
    def cache_key(self) -> str:
        return f"rate_config:{self.path or 'builtin'}"

    def get_configuration(self) -> RateConfiguration:
        """Return the current snapshot, reloading after the TTL elapses"""
        if self._snapshot is not None and time.monotonic() - self._loaded_at < self.ttl:
            return self._snapshot

        raw = cache.get(self.cache_key)
        if raw is None:
            raw = self._load_raw()
            snapshot = self._validate(raw)
            cache.set(self.cache_key, snapshot.model_dump(mode="json"), ttl=self.ttl)
        else:
            snapshot = self._validate(raw)

        if self._snapshot is None or self._snapshot.version != snapshot.version:
            logger.info(f"📊 Rate configuration {snapshot.version} loaded ({len(snapshot.rules)} rules)")
        self._snapshot = snapshot
        self._loaded_at = time.monotonic()
        return snapshot

    def reload(self) -> RateConfiguration:
        """Drop cached snapshots and read the store again"""
        cache.delete(self.cache_key)
        self._snapshot = None
        return self.get_configuration()

    def _load_raw(self) -> dict:
        if self.path is None:
            return DEFAULT_RATE_CONFIGURATION
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"❌ Failed to read rate configuration {self.path}: {e}")
            raise InvalidConfiguration(f"Rate configuration unreadable: {e}") from e

    @staticmethod
    def _validate(raw: dict) -> RateConfiguration:
        try:
            return RateConfiguration.model_validate(raw)
        except ValidationError as e:
            logger.error(f"❌ Invalid rate configuration: {e}")
            raise InvalidConfiguration(f"Invalid rate configuration: {e.errors()[0]['msg']}") from e


rate_config_repository = RateConfigRepository()


def get_rate_configuration() -> RateConfiguration:
    """FastAPI dependency - the snapshot for this request"""
    return rate_config_repository.get_configuration()
