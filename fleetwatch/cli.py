import argparse
import os
from typing import Optional

import uvicorn

from fleetwatch import config as config_mod
from fleetwatch.config import HOST, PORT


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the FleetWatch telemetry server")
    parser.add_argument("--host", default=HOST, help="Bind host")
    parser.add_argument("--port", type=int, default=PORT, help="Bind port")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the agents file (auto-discovered when it does not exist)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    if args.config:
        # The reloader re-imports in a child process, so set both
        os.environ["FLEETWATCH_AGENTS_CONFIG"] = args.config
        config_mod.AGENTS_CONFIG_PATH = args.config

    uvicorn.run(
        "fleetwatch.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
        timeout_graceful_shutdown=3,
    )


if __name__ == "__main__":
    main()
