#!/usr/bin/env python3
"""nginx-asg-sync - NGINX Plus Integration with Cloud Auto Scaling Groups

Keeps the servers of NGINX Plus upstreams in sync with the instances of cloud
auto scaling groups. Each upstream declared in the config file is bound to a
scaling group; every sync interval the private IPs of the group's instances are
pushed to the NGINX Plus API without reloading NGINX.

Supported Cloud Providers:
    - AWS: EC2 Auto Scaling groups
    (more coming soon)

Flags:
    --config_path      Path to the config file (default: /etc/nginx/aws.yaml)
                       Example config file:
                         region: us-west-2
                         api_endpoint: http://127.0.0.1:8080/api
                         sync_interval_in_seconds: 5
                         upstreams:
                           - name: backend1
                             autoscaling_group: backend-group
                             port: 80
                             kind: http
                           - name: tcp-backend
                             autoscaling_group: tcp-group
                             port: 5432
                             kind: stream

    --log_path         Path to the log file. If the file doesn't exist, it will be
                       created. Logs always go to stderr as well.
    --cloud_provider   Cloud provider: "AWS" (default: AWS)
    --log_level        DEBUG, INFO, WARNING, ERROR (default: $LOG_LEVEL or INFO)

Exit codes:
    0   terminated by SIGTERM/SIGINT
    10  invalid flags, config, cloud session or NGINX Plus API setup
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, NoReturn, Optional

from nginx_asg_sync import __version__
from nginx_asg_sync.cloud import (
    CONN_TIMEOUT_IN_SECS,
    SUPPORTED_CLOUD_PROVIDERS,
    create_cloud_provider,
    validate_cloud_provider,
)
from nginx_asg_sync.errors import ConfigError, SyncError
from nginx_asg_sync.nginx import NginxPlusClient
from nginx_asg_sync.syncer import TerminationController, UpstreamSyncer

EXIT_CODE_STARTUP_FAILURE = 10

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)

# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True)
class Settings:
    """Process settings collected once from the command line."""

    config_path: str = "/etc/nginx/aws.yaml"
    log_path: str = ""
    cloud_provider: str = "AWS"
    log_level: str = "INFO"


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(EXIT_CODE_STARTUP_FAILURE, f"{self.prog}: error: {message}\n")


def parse_args(argv: Optional[List[str]] = None) -> Settings:
    defaults = Settings()
    parser = _ArgumentParser(
        prog="nginx-asg-sync",
        description="Sync NGINX Plus upstreams with cloud auto scaling groups.",
    )
    parser.add_argument("--config_path", default=defaults.config_path, help="Path to the config file")
    parser.add_argument(
        "--log_path",
        default=defaults.log_path,
        help="Path to the log file. If the file doesn't exist, it will be created",
    )
    parser.add_argument(
        "--cloud_provider",
        default=defaults.cloud_provider,
        help=f"CloudProvider selected. Valid values are: {', '.join(SUPPORTED_CLOUD_PROVIDERS)}",
    )
    parser.add_argument(
        "--log_level",
        default=os.getenv("LOG_LEVEL", defaults.log_level),
        help="DEBUG, INFO, WARNING, ERROR",
    )
    args = parser.parse_args(argv)
    return Settings(
        config_path=args.config_path,
        log_path=args.log_path,
        cloud_provider=args.cloud_provider.strip(),
        log_level=args.log_level.upper().strip(),
    )


# =============================================================================
# Logging Setup
# =============================================================================


def setup_logging(settings: Settings) -> None:
    """Log to stderr, and also to ``settings.log_path`` when one is given."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.log_path:
        try:
            handlers.append(logging.FileHandler(settings.log_path, mode="a"))
        except OSError as e:
            raise ConfigError(f"Couldn't open the log file {settings.log_path}: {e}") from e

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )


# =============================================================================
# Main
# =============================================================================


def _fail(message: str) -> NoReturn:
    logger.error(message)
    sys.exit(EXIT_CODE_STARTUP_FAILURE)


def build_syncer(settings: Settings, termination: TerminationController) -> UpstreamSyncer:
    """Create and validate the cloud provider and NGINX Plus client.

    Raises SyncError (or ValueError for an unknown provider) if anything needed
    to start syncing is missing or unreachable.
    """
    cloud_provider = create_cloud_provider(settings.cloud_provider)
    cloud_provider.validate_and_save_config(settings.config_path)
    cloud_provider.configure()

    nginx_client = NginxPlusClient(
        cloud_provider.get_api_endpoint(), timeout=CONN_TIMEOUT_IN_SECS
    )
    nginx_client.check_api_version()

    syncer = UpstreamSyncer(
        cloud_provider=cloud_provider,
        nginx_client=nginx_client,
        termination=termination,
    )
    syncer.preflight()
    return syncer


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    settings = parse_args(argv)

    try:
        setup_logging(settings)
    except ConfigError as e:
        logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        _fail(str(e))

    if not settings.cloud_provider:
        _fail("cloud_provider is required")
    if not validate_cloud_provider(settings.cloud_provider):
        _fail(f"Invalid Cloud Provider {settings.cloud_provider}")

    logger.info(f"nginx-asg-sync version {__version__}")

    termination = TerminationController()
    termination.install()

    try:
        syncer = build_syncer(settings, termination)
    except SyncError as e:
        _fail(f"Couldn't start syncing with config {settings.config_path}: {e}")

    upstreams = syncer.cloud_provider.get_upstreams_config()
    logger.info(f"Cloud Provider: {syncer.cloud_provider.name}")
    logger.info(f"NGINX Plus API: {syncer.nginx_client.endpoint}")
    logger.info(f"Upstreams: {', '.join(f'{u.name} ({u.kind.value})' for u in upstreams)}")
    logger.info(f"Sync interval: {syncer.cloud_provider.get_sync_interval_in_seconds()}s")

    syncer.run()


if __name__ == "__main__":
    main()
