"""Shared test fixtures for SafeBroadcast."""
import pytest
from typing import Optional

from channels.memory_sink import InMemoryDeliverySink
from config.settings import BroadcastConfig
from database.store_memory import InMemoryCheckpointStore
from job_queue.broadcast_queue import BroadcastQueue
from models.schemas import BroadcastContext, RecipientSnapshot

from helpers import RecordingSleep, make_recipients


@pytest.fixture
def guild() -> BroadcastContext:
    return BroadcastContext(id="g1", name="Test Guild")


@pytest.fixture
def sink(guild) -> InMemoryDeliverySink:
    sink = InMemoryDeliverySink()
    sink.add_context(guild.id, guild.name)
    for n in range(1, 31):
        sink.add_member(guild.id, f"u{n}", username=f"user{n}", tag=f"user{n}#000{n % 10}")
    return sink


@pytest.fixture
def store() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def config() -> BroadcastConfig:
    return BroadcastConfig()


@pytest.fixture
def recipients() -> list[RecipientSnapshot]:
    return make_recipients("u1", "u2", "u3", "u4", "u5")


@pytest.fixture
def make_queue(store, sink, config, fake_sleep):
    def _make(store_override=None, sink_override=None, config_override: Optional[BroadcastConfig] = None):
        return BroadcastQueue(
            store_override or store,
            sink_override or sink,
            config_override or config,
            sleep=fake_sleep,
            rng=lambda: 0.5,
        )
    return _make


@pytest.fixture
def queue(make_queue) -> BroadcastQueue:
    return make_queue()
