import asyncio
import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from infra.errors import PublishError
from infra.core_types import Placement
from infra.memory import InMemoryFileStorage
from infra.redis import ProducerConfig, RedisBroker

TEST_TOPIC = "storage-events-test"
TEST_GROUP = "test_service"

class RecordingBroker:
    """Broker stand-in that keeps published events in memory"""
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []
        self.handlers = {}

    async def publish(self, topic, event):
        if self.fail:
            raise PublishError("broker unreachable")
        self.published.append((topic, event))
        return Placement(topic=topic, entry_id=f"{len(self.published)}-0")

    async def register_handler(self, event_type, handler):
        self.handlers[event_type] = handler

    async def close(self):
        pass

@pytest.fixture
def fake_server():
    return FakeServer()

@pytest.fixture
async def redis_client(fake_server):
    client = FakeAsyncRedis(server=fake_server)
    yield client
    await client.aclose()

def make_broker(server, consumer_name="test-consumer", **kwargs):
    # fakeredis has no INFO or WAIT
    kwargs.setdefault("producer_config", ProducerConfig(retry_backoff=0, min_replicas=0))
    kwargs.setdefault("block_ms", 50)
    kwargs.setdefault("rejoin_backoff", 0.05)
    return RedisBroker(
        producer=FakeAsyncRedis(server=server),
        consumer=FakeAsyncRedis(server=server),
        group=TEST_GROUP,
        consumer_name=consumer_name,
        **kwargs
    )

@pytest.fixture
async def broker(fake_server):
    client = make_broker(fake_server)
    yield client
    await client.close()

@pytest.fixture
async def broker_factory(fake_server):
    created = []
    def _factory(**kwargs):
        client = make_broker(fake_server, **kwargs)
        created.append(client)
        return client
    yield _factory
    for client in created:
        await client.close()

@pytest.fixture
def recording_broker():
    return RecordingBroker()

@pytest.fixture
def memory_storage():
    return InMemoryFileStorage()

@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout=3.0, interval=0.01):
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(interval)
    return _wait_until
