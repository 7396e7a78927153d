"""Reconciliation loop between a cloud provider and the NGINX Plus API.

Every tick the syncer asks the cloud provider for the current private IPs of
each upstream's scaling group and hands the full desired server list to the
NGINX Plus client, which works out what to add and remove. Failures are
confined to the upstream that produced them; the next tick is the retry.
"""

from __future__ import annotations

import logging
import signal
import time
from typing import Any, Dict, List, Optional

from nginx_asg_sync.cloud import CloudProvider
from nginx_asg_sync.config import Upstream
from nginx_asg_sync.errors import (
    ProviderConnectionError,
    SyncError,
    UpdateError,
    UpstreamNotFoundInLB,
)
from nginx_asg_sync.nginx import NginxPlusClient, UpstreamServer

logger = logging.getLogger(__name__)

MAX_FAILS = 1
SIGNAL_CHECK_INTERVAL = 0.5

# =============================================================================
# Termination
# =============================================================================


class TerminationController:
    """Cancellation token that wakes the loop up when a stop is requested.

    The signal handler only flips a flag; ``wait`` polls it every
    SIGNAL_CHECK_INTERVAL seconds, so no lock is ever taken inside a handler.
    """

    def __init__(self, check_interval: float = SIGNAL_CHECK_INTERVAL) -> None:
        self._requested = False
        self._check_interval = check_interval
        self._previous_handlers: Dict[int, Any] = {}

    def install(self, signals: Optional[List[int]] = None) -> None:
        """Register process signal handlers that request termination."""
        for sig in signals or [signal.SIGTERM, signal.SIGINT]:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)

    def uninstall(self) -> None:
        """Restore the handlers that were active before ``install``."""
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: Any) -> None:
        self._requested = True

    def request(self) -> None:
        self._requested = True

    @property
    def requested(self) -> bool:
        return self._requested

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if termination was requested."""
        deadline = time.monotonic() + timeout
        while not self._requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(remaining, self._check_interval))
        return True


# =============================================================================
# Core Syncer
# =============================================================================


def build_servers(ips: List[str], port: int) -> List[UpstreamServer]:
    """Desired server list for an upstream, in the order the provider returned."""
    return [UpstreamServer(server=f"{ip}:{port}", max_fails=MAX_FAILS) for ip in ips]


class UpstreamSyncer:
    def __init__(
        self,
        *,
        cloud_provider: CloudProvider,
        nginx_client: NginxPlusClient,
        termination: Optional[TerminationController] = None,
    ):
        self.cloud_provider = cloud_provider
        self.nginx_client = nginx_client
        self.termination = termination or TerminationController()

    def preflight(self) -> None:
        """One-time startup checks.

        Raises UpstreamNotFoundInLB if an upstream is missing from NGINX. A missing
        scaling group is only a warning, since instances may show up later.
        """
        for upstream in self.cloud_provider.get_upstreams_config():
            if not self.nginx_client.upstream_exists(upstream.name, upstream.kind):
                raise UpstreamNotFoundInLB(upstream.name, upstream.kind.value)

            try:
                exists = self.cloud_provider.check_if_scaling_group_exists(upstream.scaling_group)
            except ProviderConnectionError as e:
                logger.warning(
                    f"Couldn't check if scaling group '{upstream.scaling_group}' exists: {e}"
                )
                continue
            if not exists:
                logger.warning(
                    f"Scaling group '{upstream.scaling_group}' doesn't exist "
                    f"in {self.cloud_provider.name}"
                )

    def sync_upstream(self, upstream: Upstream) -> bool:
        """Push the current members of one upstream's scaling group to NGINX."""
        try:
            ips = self.cloud_provider.get_private_ips_for_scaling_group(upstream.scaling_group)
        except SyncError as e:
            logger.error(f"Couldn't get the IP addresses for {upstream.scaling_group}: {e}")
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error getting the IP addresses for {upstream.scaling_group}: {e}",
                exc_info=True,
            )
            return False

        servers = build_servers(ips, upstream.port)

        try:
            added, removed = self.nginx_client.apply_servers(upstream.name, upstream.kind, servers)
        except UpdateError as e:
            logger.error(f"Couldn't update {upstream.kind.value} servers of {upstream.name}: {e}")
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error updating {upstream.kind.value} servers of {upstream.name}: {e}",
                exc_info=True,
            )
            return False

        if added or removed:
            logger.info(
                f"Updated {upstream.kind.value} servers of {upstream.name}; "
                f"Added: {[s.server for s in added]}, Removed: {[s.server for s in removed]}"
            )
        else:
            logger.debug(f"No changes for {upstream.kind.value} upstream {upstream.name}")
        return True

    def sync_once(self) -> None:
        for upstream in self.cloud_provider.get_upstreams_config():
            self.sync_upstream(upstream)

    def run(self) -> None:
        """Sync every interval until termination is requested."""
        interval = self.cloud_provider.get_sync_interval_in_seconds()
        while True:
            self.sync_once()
            if self.termination.wait(interval):
                logger.info("Terminating...")
                return
