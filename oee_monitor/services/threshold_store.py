"""
OEE Monitor - Threshold Store

This module holds the deployment-wide alert thresholds. The in-memory store
serves single-node deployments and tests; the Redis store shares thresholds
between API workers and Celery workers.
"""

import json
from abc import ABC, abstractmethod
from typing import Optional
import structlog

from oee_monitor.config import settings
from oee_monitor.models.production import AlertThresholds
from oee_monitor.services.alert_evaluator import default_thresholds
from oee_monitor.utils.exceptions import ConfigurationError, ExternalServiceError

logger = structlog.get_logger()

THRESHOLDS_KEY = "oee_monitor:alert_thresholds"


class ThresholdStore(ABC):
    """Alert threshold configuration store."""

    @abstractmethod
    async def get_thresholds(self) -> AlertThresholds:
        """Current thresholds, or the configured defaults when none were saved."""

    @abstractmethod
    async def set_thresholds(self, thresholds: AlertThresholds) -> AlertThresholds:
        """Replace the current thresholds."""


class InMemoryThresholdStore(ThresholdStore):

    def __init__(self, initial: Optional[AlertThresholds] = None):
        self._thresholds = initial

    async def get_thresholds(self) -> AlertThresholds:
        if self._thresholds is None:
            return default_thresholds()
        return self._thresholds.model_copy()

    async def set_thresholds(self, thresholds: AlertThresholds) -> AlertThresholds:
        self._thresholds = thresholds.model_copy()
        logger.info("Alert thresholds updated", **thresholds.model_dump())
        return thresholds


class RedisThresholdStore(ThresholdStore):
    """Thresholds kept as one JSON document in Redis."""

    def __init__(self, client, key: str = THRESHOLDS_KEY):
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, redis_url: Optional[str] = None) -> "RedisThresholdStore":
        import redis.asyncio as redis

        return cls(redis.from_url(redis_url or settings.REDIS_URL, decode_responses=True))

    async def get_thresholds(self) -> AlertThresholds:
        try:
            raw = await self.client.get(self.key)
        except Exception as e:
            logger.error("Failed to read alert thresholds from Redis", error=str(e))
            raise ExternalServiceError("redis", "Failed to read alert thresholds", {"error": str(e)})

        if raw is None:
            return default_thresholds()

        try:
            return AlertThresholds(**json.loads(raw))
        except (TypeError, ValueError) as e:
            raise ConfigurationError("Stored alert thresholds are malformed", details={"error": str(e)})

    async def set_thresholds(self, thresholds: AlertThresholds) -> AlertThresholds:
        try:
            await self.client.set(self.key, json.dumps(thresholds.model_dump()))
        except Exception as e:
            logger.error("Failed to write alert thresholds to Redis", error=str(e))
            raise ExternalServiceError("redis", "Failed to write alert thresholds", {"error": str(e)})

        logger.info("Alert thresholds updated", **thresholds.model_dump())
        return thresholds


def create_threshold_store(backend: Optional[str] = None) -> ThresholdStore:
    """Store for the configured THRESHOLD_STORE_BACKEND."""
    backend = backend or settings.THRESHOLD_STORE_BACKEND
    if backend == "redis":
        return RedisThresholdStore.from_url()
    return InMemoryThresholdStore()
