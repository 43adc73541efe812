#
# Copyright 2025 The LevelSenseLocal contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Command-line interface for LevelSense Local."""

import asyncio
import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from . import zeroconf_register
from .__version__ import __version__
from .cloud import LevelSenseCloudAPI
from .config import ConfigError, load_config
from .platform import LevelSensePlatform
from .registry import AccessoryRegistrySQLite
from .routes import create_app, register_routes

# Logger will be configured in main() based on daemon/console mode
logger = logging.getLogger(__name__)

platform: Optional[LevelSensePlatform] = None
server: Optional[uvicorn.Server] = None


def build_uvicorn_log_config(args) -> dict:
    """Match uvicorn's logging to the mode chosen for our own logs."""
    if args.syslog:
        # Syslog mode: no uvicorn handlers, propagate to the root logger
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {
                "uvicorn": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.error": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": True},
            },
        }

    if args.daemon:
        formatter = {"format": "%(levelname)-8s %(message)s"}
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["default"], "level": "INFO", "propagate": False},
        },
    }


async def run_server(args, config):
    """Run the LevelSense Local server."""
    global platform, server

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        if server:
            server.should_exit = True

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    db_path = Path(os.path.expanduser(args.state))
    cloud_api = LevelSenseCloudAPI(
        email=config.email,
        password=config.password,
        session_key=config.session_key,
        request_timeout=config.request_timeout,
    )
    advertised = False

    try:
        registry = AccessoryRegistrySQLite(str(db_path))
        platform = LevelSensePlatform(config, cloud_api, registry)

        app = create_app()
        register_routes(app, lambda: platform)

        # Two-phase startup: hand over what the registry restored, then discover
        platform.restore(registry.restore_cached())
        await platform.start()

        if not args.no_zeroconf:
            advertised, message = await zeroconf_register.register_service_async(
                port=args.port, props={'path': '/', 'version': __version__}
            )
            if not advertised:
                logger.warning(f"mDNS advertisement unavailable: {message}")

        logger.info("*** LevelSense Local ready! ***")
        logger.info(f"API Server: http://0.0.0.0:{args.port}")
        logger.info(f"Documentation: http://0.0.0.0:{args.port}/docs")
        logger.info(f"Status: http://0.0.0.0:{args.port}/status")

        uvicorn_config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=args.port,
            log_config=build_uvicorn_log_config(args),
            access_log=True
        )
        server = uvicorn.Server(uvicorn_config)
        await server.serve()

    except Exception as e:
        logger.error(f"ERROR: Failed to start LevelSense Local: {e}")
        raise
    finally:
        logger.info("Performing cleanup...")
        if platform:
            await platform.stop()
        if advertised:
            await zeroconf_register.unregister_service_async()
        await cloud_api.close()

        if args.pid_file:
            pid_path = Path(args.pid_file)
            try:
                if pid_path.exists():
                    pid_path.unlink()
                    logger.info(f"PID file removed: {pid_path}")
            except OSError as e:
                logger.warning(f"Failed to remove PID file: {e}")


def configure_logging(args):
    """Configure the root logger for console, daemon or syslog output."""
    if args.syslog:
        syslog_address = args.syslog
        if ':' in syslog_address and not syslog_address.startswith('/'):
            host, port = syslog_address.rsplit(':', 1)
            syslog_address = (host, int(port))

        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON
            )
            syslog_handler.setFormatter(logging.Formatter(
                'levelsense-local[%(process)d]: %(levelname)s %(message)s'
            ))
            root_logger = logging.getLogger()
            root_logger.setLevel(logging.INFO)
            root_logger.handlers = [syslog_handler]
            logger.info("Logging to syslog: %s", args.syslog)
        except OSError as e:
            logging.basicConfig(
                level=logging.INFO,
                format='%(asctime)s %(levelname)s %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                stream=sys.stdout,
                force=True
            )
            logger.error(f"Failed to connect to syslog ({args.syslog}): {e}")
            logger.info("Falling back to console logging")
    elif args.daemon:
        # syslog adds its own timestamp
        logging.basicConfig(
            level=logging.INFO,
            format='%(levelname)s %(message)s',
            stream=sys.stdout,
            force=True
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            stream=sys.stdout,
            force=True
        )

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="LevelSense Local - keep LevelSense sensors in sync as local accessories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Use a homebridge-style platform block
  levelsense-local --config ~/.levelsense.json

  # Credentials on the command line, poll every 5 minutes
  levelsense-local --email me@example.com --password secret --poll-minutes 5

  # Skip login with a known session key
  LEVELSENSE_SESSION_KEY=abc123 levelsense-local

  # Run as system daemon, logging to syslog
  levelsense-local --config /etc/levelsense.json --daemon --syslog /dev/log

API Endpoints:
  GET  /status                    - Reconciliation and API status
  GET  /accessories               - All tracked accessories
  GET  /accessories/{serial}      - One accessory
  POST /refresh                   - Run a poll pass now
  POST /refresh/login             - Clear degraded mode after fixing credentials
        """
    )
    parser.add_argument("--config",
                        help="JSON file with the platform block (email, password, sessionKey, pollMinutes)")
    parser.add_argument("--email", help="LevelSense account email")
    parser.add_argument("--password", help="LevelSense account password")
    parser.add_argument("--session-key", help="LevelSense session key, bypasses login")
    parser.add_argument("--poll-minutes", help="Minutes between polls (minimum 2, default 15)")
    parser.add_argument("--state", default="~/.levelsense-local.db",
                        help="Path to accessory database (default: ~/.levelsense-local.db)")
    parser.add_argument("--port", type=int, default=4408,
                        help="Port for REST API server (default: 4408)")
    parser.add_argument("--no-zeroconf", action="store_true",
                        help="Do not advertise the REST API over mDNS")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--daemon", action="store_true",
                        help="Run in daemon mode (log format for syslog, auto-enables --pid-file)")
    parser.add_argument("--syslog",
                        help="Send logs to syslog instead of stdout (e.g., /dev/log or remote.server:514)")
    parser.add_argument("--pid-file",
                        help="Write process ID to specified file")
    return parser


def main():
    """Main entry point for the CLI."""
    args = build_parser().parse_args()

    if args.daemon and not args.pid_file:
        args.pid_file = "/var/run/levelsense-local.pid" if sys.platform != "win32" else "levelsense-local.pid"

    configure_logging(args)

    try:
        config = load_config(args.config, overrides={
            'email': args.email,
            'password': args.password,
            'sessionKey': args.session_key,
            'pollMinutes': args.poll_minutes,
        })
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    logger.info(f"Configuration: {config.to_dict()}")

    if args.pid_file:
        pid_path = Path(args.pid_file)
        try:
            pid_path.write_text(str(os.getpid()))
            logger.info(f"PID file written: {pid_path}")
        except OSError as e:
            logger.error(f"Failed to write PID file: {e}")
            sys.exit(1)

    try:
        asyncio.run(run_server(args, config))
    except KeyboardInterrupt:
        logger.info("*** Shutdown complete ***")
    except Exception as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
