"""Shared fixtures: a controllable clock, stores and a fully wired engine context."""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from loguru import logger

from lore_kernel.context import EngineContext
from lore_kernel.models.config import EngineConfig
from lore_kernel.models.decision import Decision, DecisionOption
from lore_kernel.models.world import WorldAttributeEffects
from lore_kernel.storage.kv import InMemoryKeyValueStore
from lore_kernel.storage.records import RecordStore


class FakeClock:
    """Manually advanced clock, usable both as a datetime and a float-seconds source."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 3, 12, 0, 0)   # a Monday

    def __call__(self) -> datetime:
        return self.now

    def seconds(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_decision(
    decision_id: str = "d1",
    effects: Optional[List[Dict[str, int]]] = None,
    created_at: Optional[datetime] = None,
    **kwargs,
) -> Decision:
    """A decision with one option per effects dict (three options by default)."""
    if effects is None:
        effects = [
            {"stability": 2, "curiosity": -1},
            {"curiosity": 3},
            {"survival": -2, "reputation": 1},
        ]
    options = [
        DecisionOption(
            id=f"opt{i}",
            text=f"To take path {i}",
            description=f"Path {i} was taken.",
            attribute_effects=WorldAttributeEffects(**e),
        )
        for i, e in enumerate(effects)
    ]
    return Decision(
        id=decision_id,
        title=f"Decision {decision_id}",
        options=options,
        created_at=created_at or datetime(2025, 3, 3, 0, 0, 0),
        **kwargs,
    )


@pytest.fixture(autouse=True)
def silence_loguru():
    logger.remove()
    logger.add(lambda msg: None)
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return InMemoryKeyValueStore(clock=clock.seconds)


@pytest.fixture
def records(kv):
    return RecordStore(kv)


@pytest.fixture
def ctx(kv, clock):
    return EngineContext.create(EngineConfig(), kv, clock)
