#!/usr/bin/env python3
"""
CPI executable: reads one JSON request from stdin, writes one JSON response
to stdout.  Logs go to stderr so they never corrupt the response.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import socket
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .cluster import ClientProvider
from .config import CONFIG_ENV_VAR, load_config
from .dispatch import Dispatcher, error_response
from .errors import CLOUD_ERROR, CPIError

# Load environment variables from .env file (for local development)
load_dotenv()


def configure_logging() -> None:
    """Configure logging on stderr with the hostname for traceability."""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_format = "%(asctime)s [%(levelname)s] [%(name)s] [%(hostname)s] %(message)s"

    hostname = socket.gethostname()

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format=log_format,
        stream=sys.stderr,
    )

    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.hostname = hostname
        return record

    logging.setLogRecordFactory(record_factory)
    logging.debug("Logging configured at %s level", log_level)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Kubernetes cloud provider interface")
    parser.add_argument(
        "--config",
        "-configPath",
        dest="config",
        default=os.environ.get(CONFIG_ENV_VAR),
        help=f"path to the CPI configuration (default: ${CONFIG_ENV_VAR})",
    )
    args = parser.parse_args(argv)

    configure_logging()

    try:
        request = json.load(sys.stdin)
    except ValueError as exc:
        logging.error("Cannot decode request: %s", exc)
        json.dump(error_response(CLOUD_ERROR, f"cannot decode request: {exc}"), sys.stdout)
        return 1

    try:
        cfg = load_config(args.config)
    except CPIError as exc:
        logging.critical("%s", exc)
        json.dump(error_response(exc.error_type, str(exc)), sys.stdout)
        return 1

    dispatcher = Dispatcher(cfg, ClientProvider(cfg.kubeconfig))
    response = dispatcher.handle(request)
    json.dump(response, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
