# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import argparse
import asyncio
import logging
import os
from datetime import datetime

from .api.server import start_server
from .config import Config
from .media.exceptions import StreamSourceError
from .streaming.core import failure_hint
from .streaming.options import PlayOptions


LOG_FORMAT = "[%(levelname)s] [%(name)s] %(message)s"
FILE_LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] [%(name)s] %(message)s"


def setup_logging(config, override_level=None):
    """Configure logging based on config settings."""
    # Determine log level from override, config, or default
    log_level_str = override_level.lower() if override_level else config.get("log.level").lower()

    # Map string levels to logging constants
    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "warn": logging.WARNING,  # alias
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    log_level = level_map.get(log_level_str, logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_path = None
    log_dir = config.get("log.dir")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, f"streamviewer_{datetime.now():%Y%m%d_%H%M%S}.log")
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt="%H:%M:%S"))
        handlers.append(file_handler)

    # basicConfig only formats handlers without a formatter, so the file keeps its timestamps
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,  # Level first, then logger name
        handlers=handlers,
        force=True,  # Reset any existing configuration
    )
    if log_path:
        logging.getLogger("main").info(f"logging to {log_path}")


def parse_args(argv=None):
    config = Config()
    parser = argparse.ArgumentParser(description="UDP/multicast MPEG-TS stream viewer")
    parser.add_argument("--host", default=None, help=f"Host to bind to (default {config.get('server.host')})")
    parser.add_argument("--port", type=int, default=None, help=f"Port to bind to (default {config.get('server.port')})")
    parser.add_argument("--config", default=None, help="Path to YAML/TOML/JSON config file")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "warn", "error", "critical"],
        type=str.lower,
        help="Set logging level (overrides config file)",
    )
    parser.add_argument("--url", default=None, help="Stream to start playing at boot, e.g. udp://@239.0.0.1:1234")
    parser.add_argument("--force-transcode", action="store_true", help="Always transcode the --url stream")
    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point for the stream viewer server."""
    args = parse_args(argv)

    # Load configuration
    config = Config()
    config.load(args.config)

    # Setup logging
    setup_logging(config, override_level=args.log_level)
    logger = logging.getLogger("main")
    logger.info(f"loaded config: {config.get()}")
    logger.info(f"event loop: {type(asyncio.get_running_loop()).__module__}")

    host = args.host or config.get("server.host")
    port = args.port or int(config.get("server.port"))
    runner, orchestrator = await start_server(host, port)

    try:
        if args.url:
            options = PlayOptions.from_control_params({"url": args.url, "force_transcode": args.force_transcode})
            try:
                handoff = await orchestrator.play(options)
                logger.info(f"playing {handoff.uri}")
            except StreamSourceError as e:
                logger.error(f"cannot play {args.url}: {e} - {failure_hint(e, args.force_transcode)}")

        # Keep running until interrupted
        await asyncio.Future()  # run forever

    finally:
        await runner.cleanup()


def run():
    """Entry point for setuptools console scripts."""
    # Setup high-performance event loop (uvloop/winloop)
    if os.name == "nt":
        # Windows: use winloop
        try:
            import winloop  # type: ignore[import-not-found]

            asyncio.set_event_loop_policy(winloop.EventLoopPolicy())
        except ImportError:
            pass
    else:
        # Non-Windows: use uvloop
        try:
            import uvloop  # type: ignore[import-not-found]

            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger("main").info("Shutting down...")


if __name__ == "__main__":
    run()
