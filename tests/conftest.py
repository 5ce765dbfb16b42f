"""Pytest configuration and fixtures."""

import random
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from creditledger.contracts import CostContext
from creditledger.core import ModelPricing, PriceTableOracle, ReservationManager
from creditledger.db import InMemoryRecordStore
from creditledger.settings import Settings

TEST_MODEL = "test/chat-model"

# 1 base unit per million prompt tokens and 2 per million completion tokens,
# i.e. 1_000 and 2_000 nano-units per token.
TEST_PRICES = {
    TEST_MODEL: ModelPricing(input=Decimal("1"), output=Decimal("2")),
}


class FakeRedis:
    """Minimal async Redis stand-in supporting get/setex."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.values[key] = value
        self.ttls[key] = ttl


@pytest.fixture(autouse=True)
def seed_random():
    """Seed random for deterministic tests."""
    random.seed(42)
    yield


@pytest.fixture
def workspace_id() -> str:
    """Generate a workspace ID for tests."""
    return f"ws-{uuid4().hex[:12]}"


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    """Settings with all ledger checks enabled and no env overrides."""
    return Settings(
        _env_file=None,
        enable_credit_validation=True,
        enable_spending_limit_checks=True,
        reservation_ttl_seconds=900,
    )


@pytest.fixture
def store(settings) -> InMemoryRecordStore:
    return InMemoryRecordStore(settings=settings)


@pytest.fixture
def pricing() -> PriceTableOracle:
    return PriceTableOracle(TEST_PRICES)


@pytest.fixture
def manager(store, pricing, settings, now) -> ReservationManager:
    """Reservation manager over the in-memory store with a fixed clock."""
    return ReservationManager(store, pricing, settings=settings, clock=lambda: now)


@pytest.fixture
def cost_context() -> CostContext:
    return CostContext(agent_id="agent-1", conversation_id="conv-1", model=TEST_MODEL)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
