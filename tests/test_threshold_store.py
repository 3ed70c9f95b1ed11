import json

import pytest

from oee_monitor.models.production import AlertThresholds
from oee_monitor.services.threshold_store import (
    InMemoryThresholdStore, RedisThresholdStore, create_threshold_store
)
from oee_monitor.utils.exceptions import ConfigurationError, ExternalServiceError


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise ConnectionError("connection refused")
        return self.data.get(key)

    async def set(self, key, value):
        if self.fail:
            raise ConnectionError("connection refused")
        self.data[key] = value


async def test_memory_store_defaults_and_updates():
    store = InMemoryThresholdStore()

    assert (await store.get_thresholds()).oee_min == 65.0

    await store.set_thresholds(AlertThresholds(oee_min=70.0, downtime_max=20.0))
    current = await store.get_thresholds()

    assert current.oee_min == 70.0
    assert current.downtime_max == 20.0


async def test_memory_store_returns_copies():
    store = InMemoryThresholdStore(AlertThresholds(oee_min=70.0))

    first = await store.get_thresholds()
    first.oee_min = 10.0

    assert (await store.get_thresholds()).oee_min == 70.0


async def test_redis_store_round_trip():
    client = FakeRedis()
    store = RedisThresholdStore(client)

    assert (await store.get_thresholds()).production_min == 85.0

    await store.set_thresholds(AlertThresholds(production_min=90.0, severity_banding=False))

    assert json.loads(client.data["oee_monitor:alert_thresholds"])["production_min"] == 90.0
    current = await store.get_thresholds()
    assert current.production_min == 90.0
    assert current.severity_banding is False


async def test_redis_store_reports_connection_failures():
    store = RedisThresholdStore(FakeRedis(fail=True))

    with pytest.raises(ExternalServiceError):
        await store.get_thresholds()
    with pytest.raises(ExternalServiceError):
        await store.set_thresholds(AlertThresholds())


async def test_redis_store_rejects_malformed_document():
    client = FakeRedis()
    client.data["oee_monitor:alert_thresholds"] = "{not json"

    with pytest.raises(ConfigurationError):
        await RedisThresholdStore(client).get_thresholds()


def test_factory_defaults_to_memory():
    assert isinstance(create_threshold_store("memory"), InMemoryThresholdStore)
    assert isinstance(create_threshold_store(), InMemoryThresholdStore)
