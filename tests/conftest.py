"""
Pytest fixtures for takbench tests.
"""

import logging
import sys
from pathlib import Path
from typing import Callable, List

import pytest

from takbench.engine_manager import EngineConfig
from takbench.schedule import ScheduleEntry, TimeControl

FAKE_ENGINE = str(Path(__file__).parent / "fake_engine.py")


class ListHandler(logging.Handler):
    """Collects formatted log messages in memory."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.messages: List[str] = []

    def emit(self, record):
        self.messages.append(record.getMessage())


@pytest.fixture
def make_engine() -> Callable[..., EngineConfig]:
    """Factory for fake engine configurations."""
    def factory(mode: str = "normal", name: str = None, **kwargs) -> EngineConfig:
        return EngineConfig(
            name=name or f"fake-{mode}",
            path=sys.executable,
            args=[FAKE_ENGINE, mode],
            **kwargs
        )
    return factory


@pytest.fixture
def sink(request):
    """In-memory logger; messages are in sink.handler.messages."""
    log = logging.getLogger(f"takbench.test.{request.node.name}")
    log.setLevel(logging.DEBUG)
    log.propagate = False
    handler = ListHandler()
    log.addHandler(handler)
    log.handler = handler
    yield log
    log.removeHandler(handler)


@pytest.fixture
def entry() -> ScheduleEntry:
    """A 5x5 game from the empty board with a generous clock."""
    return ScheduleEntry(
        round_number=0,
        white_id=0,
        black_id=1,
        opening=None,
        size=5,
        komi=0.0,
        time_control=TimeControl(20000, 0),
    )
