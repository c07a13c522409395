from __future__ import annotations

import logging
from typing import Optional

from .proto import Matched, PartnerLeft, Waiting
from .registry import Client, ConnectionState, Registry

log = logging.getLogger("blinkchat.core.matchmaking")


class Matchmaker:
    """Single-slot matchmaking queue.

    At most one client waits at a time. Every method runs to completion without
    awaiting, so pairing and teardown are atomic with respect to each other as long
    as they are called from the event loop thread.
    """

    def __init__(self, registry: Registry) -> None:
        self.registry = registry
        self.waiting_id: Optional[str] = None

    def request_match(self, client_id: str) -> None:
        client = self.registry.lookup(client_id)
        self.teardown(client)

        other = self._waiting_client()
        if other is not None and other.client_id != client_id:
            client.partner_id = other.client_id
            other.partner_id = client_id
            self.waiting_id = None
            client.move_to(ConnectionState.MATCHED)
            other.move_to(ConnectionState.MATCHED)
            client.send(Matched())
            other.send(Matched())
            log.info("Matched %s with %s", other.client_id, client_id)
            return

        self.waiting_id = client_id
        client.move_to(ConnectionState.QUEUED)
        client.send(Waiting())
        log.debug("Client %s is waiting", client_id)

    def teardown(self, client: Client) -> None:
        """Dissolve the client's pairing, notifying the abandoned partner."""

        if client.partner_id is None:
            return
        partner = self.registry.get(client.partner_id)
        client.partner_id = None
        if client.state is ConnectionState.MATCHED:
            client.move_to(ConnectionState.IDLE)
        if partner is not None and partner.partner_id == client.client_id:
            partner.partner_id = None
            partner.move_to(ConnectionState.IDLE)
            partner.send(PartnerLeft())
            log.info("Client %s left %s", client.client_id, partner.client_id)

    def release(self, client_id: str) -> None:
        if self.waiting_id == client_id:
            self.waiting_id = None

    def _waiting_client(self) -> Optional[Client]:
        if self.waiting_id is None:
            return None
        other = self.registry.get(self.waiting_id)
        if other is None or other.partner_id is not None:
            log.debug("Skipping stale waiting slot entry %s", self.waiting_id)
            self.waiting_id = None
            return None
        return other


__all__ = ["Matchmaker"]
