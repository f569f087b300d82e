from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

import uvicorn

from odali.core.coordinator import Coordinator
from odali.core.credentials import ScryptVerifier
from odali.core.store import PersistenceGateway
from odali.server.config import ServerSettings, load_settings
from odali.server.http import create_app
from odali.server.runtime import SessionServer

log = logging.getLogger("odali.cmd.server")


async def _run(settings: ServerSettings) -> None:
    gateway = PersistenceGateway(settings.db_path, ScryptVerifier(), retention_ms=settings.retention_ms)
    await gateway.open()
    coordinator = await Coordinator.restore(gateway, retention_ms=settings.retention_ms)
    coordinator.start_sweeper(settings.sweep_interval_secs)

    http_host, http_port = settings.http_address()
    ws_host, ws_port = settings.ws_address()
    app = create_app(coordinator, settings.call_tokens.issuer())
    http_server = uvicorn.Server(
        uvicorn.Config(app, host=http_host, port=http_port, log_level=settings.log_level.lower())
    )
    sessions = SessionServer(coordinator, ws_host, ws_port)
    await sessions.start()
    http_task = asyncio.create_task(http_server.serve(), name="http")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass
    http_task.add_done_callback(lambda _task: stop_event.set())

    log.info("Odali running (http %s:%d, sessions %s:%d). Press Ctrl+C to stop.",
             http_host, http_port, ws_host, ws_port)
    try:
        await stop_event.wait()
    finally:
        http_server.should_exit = True
        await asyncio.gather(http_task, return_exceptions=True)
        await sessions.stop()
        await coordinator.close()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Odali presence and relationship server")
    parser.add_argument("--config", help="Path to server YAML config")
    args = parser.parse_args(argv)

    settings = load_settings(Path(args.config) if args.config else None)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(_run(settings))


if __name__ == "__main__":
    main()
