from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from blinkchat.server.config import ConfigError, ServerConfig, load_config
from blinkchat.server.runtime import ServerRuntime

log = logging.getLogger("blinkchat.cmd.server")


async def _run(config: ServerConfig) -> None:
    runtime = ServerRuntime(config)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info("Server running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="BlinkChat anonymous pairing server")
    parser.add_argument("--config", help="Path to server YAML config")
    parser.add_argument("--host", help="Interface to bind")
    parser.add_argument("--port", type=int, help="Port to listen on")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    args = parser.parse_args(argv)

    try:
        config = load_config(
            args.config,
            overrides={"host": args.host, "port": args.port, "log_level": args.log_level},
        )
    except ConfigError as exc:
        print(f"blinkchat-server: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        asyncio.run(_run(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
