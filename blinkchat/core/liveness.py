from __future__ import annotations

import asyncio
import logging
from typing import Callable, List

from .lifecycle import LifecycleHandler
from .registry import Registry

log = logging.getLogger("blinkchat.core.liveness")

DEFAULT_SWEEP_INTERVAL_MS = 30_000


class LivenessMonitor:
    """Probe-and-evict pass over every registered client.

    A client is evicted on the first sweep that finds it still marked dead, i.e.
    it left a whole sweep interval unanswered.
    """

    def __init__(
        self,
        registry: Registry,
        lifecycle: LifecycleHandler,
        interval_ms: int = DEFAULT_SWEEP_INTERVAL_MS,
    ) -> None:
        self.registry = registry
        self.lifecycle = lifecycle
        self.interval_ms = interval_ms

    def sweep(self) -> List[str]:
        evicted: List[str] = []
        for client in self.registry:
            if not client.alive:
                self.lifecycle.close(client.client_id, reason="heartbeat timeout")
                client.link.terminate()
                evicted.append(client.client_id)
                continue
            client.alive = False
            client.link.probe()
        if evicted:
            log.info("Liveness sweep evicted %d client(s)", len(evicted))
        return evicted

    async def run(self, sweep: Callable[[], object] | None = None) -> None:
        tick = sweep or self.sweep
        while True:
            await asyncio.sleep(self.interval_ms / 1000)
            try:
                tick()
            except Exception:
                log.exception("liveness sweep failed")


__all__ = ["LivenessMonitor", "DEFAULT_SWEEP_INTERVAL_MS"]
