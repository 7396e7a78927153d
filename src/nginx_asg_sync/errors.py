"""Exception hierarchy shared by the config, provider, client and sync layers."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all nginx-asg-sync errors."""


class ConfigError(SyncError):
    """The config file is unreadable, malformed or missing a mandatory field."""


class ProviderConnectionError(SyncError):
    """The cloud session could not be set up or a cloud API call failed."""


class ScalingGroupNotFound(SyncError):
    """The named scaling group does not exist in the cloud provider."""

    def __init__(self, name: str):
        super().__init__(f"autoscaling group {name} doesn't exist")
        self.name = name


class UpstreamNotFoundInLB(SyncError):
    """A declared upstream is not configured on the load balancer."""

    def __init__(self, name: str, kind: str):
        super().__init__(f"{kind} upstream {name} doesn't exist in NGINX")
        self.name = name
        self.kind = kind


class UpdateError(SyncError):
    """Submitting a server list to the load balancer failed."""


class LoadBalancerClientError(SyncError):
    """The load balancer API is unreachable or does not speak a supported version."""
