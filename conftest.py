from typing import Any, Dict, List

import pytest

from blinkchat.core.hub import ChatHub


class FakeLink:
    """Records everything the hub pushes at a connection."""

    def __init__(self) -> None:
        self.frames: List[Dict[str, Any]] = []
        self.probes = 0
        self.terminated = False

    def post(self, frame: Dict[str, Any]) -> None:
        self.frames.append(frame)

    def probe(self) -> None:
        self.probes += 1

    def terminate(self) -> None:
        self.terminated = True

    def types(self) -> List[str]:
        return [f["type"] for f in self.frames]

    def of_type(self, type_: str) -> List[Dict[str, Any]]:
        return [f for f in self.frames if f["type"] == type_]

    def clear(self) -> None:
        self.frames.clear()


@pytest.fixture
def hub():
    return ChatHub(max_message_length=500, sweep_interval_ms=30_000)


@pytest.fixture
def make_link():
    return FakeLink


@pytest.fixture
def pair(hub):
    """Two connected clients that have been matched with each other."""
    a, b = FakeLink(), FakeLink()
    a_id = hub.connect(a)
    b_id = hub.connect(b)
    a.clear()
    b.clear()
    return (a_id, a), (b_id, b)
