from __future__ import annotations

import argparse
import sys

import uvicorn

from newsletter.config import get_settings
from newsletter.observability.subscriber import build_subscriber, install_subscriber


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Newsletter subscription service")
    parser.add_argument("--host", default=settings.app_host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.app_port, help="Port to bind")
    args = parser.parse_args()

    # Must happen before the app is imported so every logger sees the pipeline.
    install_subscriber(build_subscriber(settings.app_name, settings.default_log_filter, sys.stdout))

    from newsletter.main import app

    # log_config=None keeps uvicorn from installing its own handlers; its records go through the bridge.
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
