from __future__ import annotations

import argparse

import structlog
import uvicorn

from promserver.config import get_settings
from promserver.main import create_app
from promserver.observability.logging import configure_logging


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Static file server with Prometheus request metrics")
    parser.add_argument("--host", default=settings.host, help="Interface to bind to")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument("--static-dir", default=settings.static_dir, help="Directory served at /")
    args = parser.parse_args()

    settings = settings.model_copy(update={"host": args.host, "port": args.port, "static_dir": args.static_dir})
    configure_logging(settings.log_level, settings.log_format)

    app = create_app(settings)
    structlog.get_logger("promserver").info("serving", host=settings.host, port=settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
