from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from lanrelay.server.runtime import DEFAULT_LISTEN, ServerRuntime

log = logging.getLogger("lanrelay.cmd.server")


def load_config(config_path: Optional[Path]) -> Dict[str, Any]:
    """Read the YAML config, then apply LANRELAY_HOST / LANRELAY_PORT overrides."""
    config: Dict[str, Any] = {}
    if config_path is not None:
        if config_path.exists():
            config = yaml.safe_load(config_path.read_text()) or {}
        else:
            log.warning("Config %s not found, using defaults", config_path)

    host, port = str(config.get("listen", DEFAULT_LISTEN)).rsplit(":", 1)
    host = os.getenv("LANRELAY_HOST", host)
    port = os.getenv("LANRELAY_PORT", port)
    config["listen"] = f"{host}:{port}"
    return config


async def _run(config: Dict[str, Any]) -> None:
    runtime = ServerRuntime(config)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info("Relay running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="LAN peer directory and file relay")
    parser.add_argument("--config", default=None, help="Path to server YAML config")
    args = parser.parse_args(argv)

    config = load_config(Path(args.config) if args.config else None)
    logging.basicConfig(
        level=str(config.get("log_level", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
