from __future__ import annotations

import logging

from .matchmaking import Matchmaker
from .registry import ConnectionState, Link, Registry

log = logging.getLogger("blinkchat.core.lifecycle")


class LifecycleHandler:
    """Connection open / re-queue / close orchestration.

    connect: register, announce the id, enter matchmaking.
    requeue: teardown, then matchmaking again.
    close:   teardown, vacate the waiting slot, forget the client. Safe to call twice.
    """

    def __init__(self, registry: Registry, matchmaker: Matchmaker) -> None:
        self.registry = registry
        self.matchmaker = matchmaker

    def connect(self, link: Link) -> str:
        client_id = self.registry.register(link)
        self.matchmaker.request_match(client_id)
        return client_id

    def requeue(self, client_id: str) -> None:
        self.matchmaker.request_match(client_id)

    def close(self, client_id: str, reason: str = "closed") -> bool:
        client = self.registry.get(client_id)
        if client is None:
            return False
        self.matchmaker.teardown(client)
        self.matchmaker.release(client_id)
        self.registry.remove(client_id)
        client.move_to(ConnectionState.CLOSED)
        log.info("Client %s disconnected (%s)", client_id, reason)
        return True


__all__ = ["LifecycleHandler"]
