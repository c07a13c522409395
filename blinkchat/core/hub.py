from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from .lifecycle import LifecycleHandler
from .liveness import DEFAULT_SWEEP_INTERVAL_MS, LivenessMonitor
from .matchmaking import Matchmaker
from .proto import ErrorEvent, ProtocolError, QueueRequest, parse_inbound
from .registry import Link, Registry
from .router import DEFAULT_MAX_MESSAGE_LENGTH, MessageRouter

log = logging.getLogger("blinkchat.core.hub")


@dataclass(frozen=True)
class HubStats:
    clients: int
    pairs: int
    waiting: bool


class ChatHub:
    """All matchmaking state behind one boundary.

    The registry and the waiting slot are only ever touched through this object,
    from the event loop thread, and no method awaits.
    """

    def __init__(
        self,
        *,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        sweep_interval_ms: int = DEFAULT_SWEEP_INTERVAL_MS,
    ) -> None:
        self.registry = Registry()
        self.matchmaker = Matchmaker(self.registry)
        self.router = MessageRouter(self.registry, max_message_length)
        self.lifecycle = LifecycleHandler(self.registry, self.matchmaker)
        self.liveness = LivenessMonitor(self.registry, self.lifecycle, sweep_interval_ms)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def connect(self, link: Link) -> str:
        return self.lifecycle.connect(link)

    def receive(self, client_id: str, raw: str | bytes) -> None:
        client = self.registry.get(client_id)
        if client is None:
            log.debug("Frame for unknown client %s ignored", client_id)
            return
        try:
            message = parse_inbound(raw)
        except ProtocolError as exc:
            log.warning("Malformed frame from %s: %s", client_id, exc.details)
            client.send(ErrorEvent(message=exc.message, details=exc.details))
            return

        if isinstance(message, QueueRequest):
            self.lifecycle.requeue(client_id)
        else:
            self.router.route(client, message)

    def disconnect(self, client_id: str, reason: str = "closed") -> bool:
        return self.lifecycle.close(client_id, reason)

    def mark_alive(self, client_id: str) -> None:
        client = self.registry.get(client_id)
        if client is not None:
            client.alive = True

    def sweep(self) -> List[str]:
        return self.liveness.sweep()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def waiting_id(self) -> str | None:
        return self.matchmaker.waiting_id

    def snapshot(self) -> HubStats:
        paired = sum(1 for client in self.registry if client.partner_id is not None)
        return HubStats(
            clients=len(self.registry),
            pairs=paired // 2,
            waiting=self.matchmaker.waiting_id is not None,
        )


__all__ = ["ChatHub", "HubStats"]
