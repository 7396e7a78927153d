"""Cloud provider interface and implementations.

A cloud provider owns the validated config file and knows how to turn a
scaling group name into the private IP addresses of its current members.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from nginx_asg_sync.config import AWSConfig, Upstream, load_aws_config
from nginx_asg_sync.errors import ConfigError, ProviderConnectionError, ScalingGroupNotFound

logger = logging.getLogger(__name__)

CONN_TIMEOUT_IN_SECS = 10

# =============================================================================
# Cloud Provider Interface
# =============================================================================


class CloudProvider(ABC):
    """Abstract base class for cloud providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def validate_and_save_config(self, config_path: str) -> None:
        """Load and validate the config file, keeping it for later calls."""
        pass

    @abstractmethod
    def configure(self) -> None:
        """Set up the session used to talk to the cloud API."""
        pass

    @abstractmethod
    def check_if_scaling_group_exists(self, name: str) -> bool:
        """Return whether exactly one scaling group with this name exists."""
        pass

    @abstractmethod
    def get_upstreams_config(self) -> List[Upstream]:
        """Return the declared upstreams in config order."""
        pass

    @abstractmethod
    def get_private_ips_for_scaling_group(self, name: str) -> List[str]:
        """Return the private IP addresses of the group's instances."""
        pass

    @abstractmethod
    def get_api_endpoint(self) -> str:
        pass

    @abstractmethod
    def get_sync_interval_in_seconds(self) -> int:
        pass


# =============================================================================
# AWS
# =============================================================================


class AWSCloudProvider(CloudProvider):
    """Resolves EC2 Auto Scaling groups to instance private IPs."""

    def __init__(self) -> None:
        self._config: Optional[AWSConfig] = None
        self._autoscaling: Any = None
        self._ec2: Any = None

    @property
    def name(self) -> str:
        return "AWS"

    @property
    def config(self) -> AWSConfig:
        if self._config is None:
            raise ConfigError("The config file has not been loaded yet")
        return self._config

    def validate_and_save_config(self, config_path: str) -> None:
        self._config = load_aws_config(config_path)

    def configure(self) -> None:
        client_config = Config(
            connect_timeout=CONN_TIMEOUT_IN_SECS,
            read_timeout=CONN_TIMEOUT_IN_SECS,
        )
        try:
            session = boto3.session.Session(region_name=self.config.region)
            self._autoscaling = session.client("autoscaling", config=client_config)
            self._ec2 = session.client("ec2", config=client_config)
        except BotoCoreError as e:
            raise ProviderConnectionError(f"Couldn't create an AWS session: {e}") from e
        logger.info(f"AWS session configured for region {self.config.region}")

    def check_if_scaling_group_exists(self, name: str) -> bool:
        _, exists = self._get_autoscaling_group(name)
        return exists

    def get_upstreams_config(self) -> List[Upstream]:
        return [u.to_upstream() for u in self.config.upstreams]

    def get_private_ips_for_scaling_group(self, name: str) -> List[str]:
        group, exists = self._get_autoscaling_group(name)
        if not exists or group is None:
            raise ScalingGroupNotFound(name)

        result: List[str] = []
        for instance in self._get_instances_of_autoscaling_group(group):
            interfaces = instance.get("NetworkInterfaces") or []
            if interfaces and interfaces[0].get("PrivateIpAddress"):
                result.append(interfaces[0]["PrivateIpAddress"])
            else:
                logger.debug(
                    f"Instance {instance.get('InstanceId')} of {name} has no private IP address"
                )
        return result

    def get_api_endpoint(self) -> str:
        return self.config.api_endpoint

    def get_sync_interval_in_seconds(self) -> int:
        return self.config.sync_interval_in_seconds

    def _get_autoscaling_group(self, name: str) -> Tuple[Optional[Dict[str, Any]], bool]:
        if self._autoscaling is None:
            raise ProviderConnectionError("The AWS session is not configured")
        try:
            resp = self._autoscaling.describe_auto_scaling_groups(AutoScalingGroupNames=[name])
        except (BotoCoreError, ClientError) as e:
            raise ProviderConnectionError(
                f"Couldn't describe the AutoScaling group {name}: {e}"
            ) from e

        groups = resp.get("AutoScalingGroups") or []
        if len(groups) != 1:
            return None, False
        return groups[0], True

    def _get_instances_of_autoscaling_group(self, group: Dict[str, Any]) -> List[Dict[str, Any]]:
        ids = [i["InstanceId"] for i in group.get("Instances") or [] if i.get("InstanceId")]
        if not ids:
            return []

        result: List[Dict[str, Any]] = []
        try:
            paginator = self._ec2.get_paginator("describe_instances")
            for page in paginator.paginate(InstanceIds=ids):
                for reservation in page.get("Reservations") or []:
                    result.extend(reservation.get("Instances") or [])
        except (BotoCoreError, ClientError) as e:
            raise ProviderConnectionError(
                f"Couldn't describe the instances of {group.get('AutoScalingGroupName')}: {e}"
            ) from e
        return result


# =============================================================================
# Provider Registry
# =============================================================================

SUPPORTED_CLOUD_PROVIDERS = ("AWS",)


def validate_cloud_provider(provider: str) -> bool:
    return provider in SUPPORTED_CLOUD_PROVIDERS


def create_cloud_provider(provider: str) -> CloudProvider:
    """Factory function to create the configured cloud provider."""
    if provider == "AWS":
        return AWSCloudProvider()
    else:
        raise ValueError(
            f"Unsupported cloud provider: '{provider}'. "
            f"Supported providers: {', '.join(SUPPORTED_CLOUD_PROVIDERS)}"
        )
