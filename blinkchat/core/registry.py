from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Protocol

from .proto import Connected, OutboundMessage, frame_dict, new_client_id, now_ms

log = logging.getLogger("blinkchat.core.registry")


class Link(Protocol):
    """Transport handle as seen by the core. None of these calls may block."""

    def post(self, frame: Dict[str, Any]) -> None: ...

    def probe(self) -> None: ...

    def terminate(self) -> None: ...


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    QUEUED = "queued"
    MATCHED = "matched"
    IDLE = "idle"
    CLOSED = "closed"


_TRANSITIONS = {
    ConnectionState.CONNECTING: {ConnectionState.QUEUED, ConnectionState.MATCHED, ConnectionState.CLOSED},
    ConnectionState.QUEUED: {ConnectionState.QUEUED, ConnectionState.MATCHED, ConnectionState.CLOSED},
    ConnectionState.MATCHED: {ConnectionState.IDLE, ConnectionState.CLOSED},
    ConnectionState.IDLE: {ConnectionState.QUEUED, ConnectionState.MATCHED, ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}


class StateTransitionError(RuntimeError):
    pass


class ClientNotFound(KeyError):
    pass


@dataclass(slots=True)
class Client:
    client_id: str
    link: Link
    partner_id: Optional[str] = None
    alive: bool = True
    state: ConnectionState = ConnectionState.CONNECTING
    connected_at_ms: int = field(default_factory=now_ms)

    def send(self, message: OutboundMessage) -> None:
        self.link.post(frame_dict(message))

    def move_to(self, new_state: ConnectionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise StateTransitionError(f"{self.client_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state


class Registry:
    """Owns every live Client, keyed by its server-assigned id."""

    def __init__(self) -> None:
        self._clients: Dict[str, Client] = {}

    def register(self, link: Link) -> str:
        client_id = new_client_id()
        while client_id in self._clients:
            client_id = new_client_id()
        client = Client(client_id=client_id, link=link)
        self._clients[client_id] = client
        client.send(Connected(client_id=client_id))
        log.debug("Registered client %s", client_id)
        return client_id

    def lookup(self, client_id: str) -> Client:
        try:
            return self._clients[client_id]
        except KeyError:
            raise ClientNotFound(client_id) from None

    def get(self, client_id: Optional[str]) -> Optional[Client]:
        if client_id is None:
            return None
        return self._clients.get(client_id)

    def remove(self, client_id: str) -> Optional[Client]:
        return self._clients.pop(client_id, None)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self) -> Iterator[Client]:
        return iter(list(self._clients.values()))

    def partner_of(self, client: Client) -> Optional[Client]:
        return self.get(client.partner_id)


__all__ = [
    "Link",
    "ConnectionState",
    "StateTransitionError",
    "ClientNotFound",
    "Client",
    "Registry",
]
